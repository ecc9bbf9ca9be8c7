# python imports:
import logging
from pathlib import Path
import sys
import unittest

if __name__ == '__main__': # pragma: no cover
	sys.path.append ( str ( Path ( __file__ ).parent.parent.absolute() ) )

# email_submit imports:
import util
import version

logger = logging.getLogger ( __name__ )


class Tests ( unittest.TestCase ):
	def test_util ( self ) -> None:
		test = self
		test.assertEqual ( util.b2s ( b'abc' ), 'abc' )
		test.assertEqual ( util.s2b ( 'é', 'utf-8' ), b'\xc3\xa9' )
		test.assertEqual ( util.b64_encode ( b'Hello' ), 'SGVsbG8=' )
		test.assertEqual ( util.b64_encode ( None ), '' )
		test.assertEqual ( util.b64_decode ( 'SGVsbG8=' ), b'Hello' )
		with test.assertRaises ( ValueError ):
			util.b64_decode ( 'not base64!' )
		test.assertTrue ( util.is_ascii ( 'plain@example.com' ) )
		test.assertFalse ( util.is_ascii ( 'josé@example.com' ) )
		test.assertEqual ( util.split_address ( 'user@example.com' ), ( 'user', 'example.com' ) )
		test.assertEqual ( util.split_address ( 'a@b@c' ), ( 'a', 'b@c' ) )
		test.assertEqual ( util.split_address ( 'postmaster' ), ( 'postmaster', '' ) )

	def test_version ( self ) -> None:
		self.assertEqual ( str ( version.__version__ ), '0.1.0' )


if __name__ == '__main__':
	logging.basicConfig ( level = logging.DEBUG )
	unittest.main()
