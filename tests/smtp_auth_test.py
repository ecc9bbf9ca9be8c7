# python imports:
import logging
from pathlib import Path
import sys
import unittest

if __name__ == '__main__': # pragma: no cover
	sys.path.append ( str ( Path ( __file__ ).parent.parent.absolute() ) )

# email_submit imports:
import smtp_auth
from smtp_auth import AuthMechanismError, LoginAuth, PlainAuth, ServerInfo

logger = logging.getLogger ( __name__ )

SECURE = ServerInfo ( 'mx.example.com', True, ( 'PLAIN', 'LOGIN' ) )


class Tests ( unittest.TestCase ):
	def test_plain ( self ) -> None:
		test = self
		mech = PlainAuth ( 'user', 'pass' )
		test.assertEqual ( mech.start ( SECURE ), ( 'PLAIN', b'\0user\0pass' ) )
		test.assertIsNone ( mech.next ( b'2.7.0 accepted', False ) )
		with test.assertRaises ( AuthMechanismError ):
			mech.next ( b'', True )

		mech = PlainAuth ( 'user', 'pass', identity = 'admin' )
		test.assertEqual ( mech.start ( SECURE )[1], b'admin\0user\0pass' )

	def test_tls_required ( self ) -> None:
		test = self
		mech = PlainAuth ( 'user', 'pass' )
		with test.assertRaises ( AuthMechanismError ):
			mech.start ( ServerInfo ( 'mx.example.com', False, ( 'PLAIN', ) ) )
		# loopback doesn't leave the machine
		test.assertEqual ( mech.start ( ServerInfo ( 'localhost', False, ( 'PLAIN', ) ) )[0], 'PLAIN' )

	def test_not_advertised ( self ) -> None:
		mech = LoginAuth ( 'user', 'pass' )
		with self.assertRaises ( AuthMechanismError ):
			mech.start ( ServerInfo ( 'mx.example.com', True, ( 'CRAM-MD5', ) ) )
		# nothing advertised at all is left for the server to judge
		self.assertEqual ( mech.start ( ServerInfo ( 'mx.example.com', True, () ) ), ( 'LOGIN', None ) )

	def test_login ( self ) -> None:
		test = self
		mech = LoginAuth ( 'user', 'pass' )
		test.assertEqual ( mech.start ( SECURE ), ( 'LOGIN', None ) )
		test.assertEqual ( mech.next ( b'Username:', True ), b'user' )
		test.assertEqual ( mech.next ( b'Password:', True ), b'pass' )
		test.assertIsNone ( mech.next ( b'ok', False ) )
		with test.assertRaises ( AuthMechanismError ):
			mech.next ( b'Favorite color:', True )

	def test_pick_mechanism ( self ) -> None:
		test = self
		mech = smtp_auth.pick_mechanism ( [ 'login', 'XOAUTH2' ], 'user', 'pass' )
		test.assertIsInstance ( mech, LoginAuth )
		mech = smtp_auth.pick_mechanism ( [ 'LOGIN', 'PLAIN' ], 'user', 'pass' )
		test.assertIsInstance ( mech, PlainAuth )
		test.assertIsNone ( smtp_auth.pick_mechanism ( [ 'GSSAPI' ], 'user', 'pass' ) )
		test.assertEqual ( repr ( mech ), "smtp_auth.PlainAuth(uid='user')" )

	def test_plugin_registry ( self ) -> None:
		with self.assertRaises ( AssertionError ):
			smtp_auth.auth_plugin ( 'PLAIN' ) ( PlainAuth )
		with self.assertRaises ( AssertionError ):
			smtp_auth.auth_plugin ( 'lower' ) ( LoginAuth )


if __name__ == '__main__':
	logging.basicConfig ( level = logging.DEBUG )
	unittest.main()
