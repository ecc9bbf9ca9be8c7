# python imports:
import logging
from pathlib import Path
import sys
import unittest

if __name__ == '__main__': # pragma: no cover
	sys.path.append ( str ( Path ( __file__ ).parent.parent.absolute() ) )

# email_submit imports:
import smtp_proto

logger = logging.getLogger ( __name__ )


class Tests ( unittest.TestCase ):
	def test_misc ( self ) -> None:
		test = self

		evt = smtp_proto.SendDataEvent ( b'foo' )
		test.assertEqual ( repr ( evt ), "base_proto.SendDataEvent(chunks=(b'foo',))" )

		test.assertEqual (
			repr ( smtp_proto.GreetingRequest() ),
			'smtp_proto.GreetingRequest()',
		)

		with test.assertRaises ( smtp_proto.Closed ):
			try:
				smtp_proto.Response.parse ( b'999 INVALID\r\n' )
			except smtp_proto.Closed as e:
				test.assertEqual ( e.args[0],
					"malformed response from server"
					" line=b'999 INVALID':"
					" e=AssertionError('invalid code=999')"
				)
				raise

		with test.assertRaises ( AssertionError ):
			smtp_proto.EhloRequest ( 'bad\r\nhost' )
		with test.assertRaises ( AssertionError ):
			smtp_proto.RcptToRequest ( '' )
		test.assertEqual ( smtp_proto.MailFromRequest ( '' ).mail_from, '' )

	def test_response_parse ( self ) -> None:
		test = self
		r = smtp_proto.Response.parse ( b'250 2.0.0 ok\r\n' )
		test.assertEqual ( repr ( r ), "smtp_proto.Response(250, '2.0.0 ok')" )
		r = smtp_proto.Response.parse ( b'250-mx.example.com\r\n' )
		test.assertIsInstance ( r, smtp_proto.IntermediateResponse )
		r = smtp_proto.Response.parse ( b'221\r\n' )
		test.assertEqual ( ( r.code, r.text ), ( 221, '' ) )
		with test.assertRaises ( smtp_proto.Closed ):
			smtp_proto.Response.parse ( b'25x ok\r\n' )
		with test.assertRaises ( smtp_proto.Closed ):
			smtp_proto.Response.parse ( b'250*ok\r\n' )

	def test_error_response ( self ) -> None:
		e = smtp_proto.ErrorResponse ( 550, '5.1.1 no such user' )
		self.assertTrue ( e.is_permanent() )
		self.assertFalse ( e.is_success() )
		self.assertEqual ( str ( e ), '550 5.1.1 no such user' )
		self.assertTrue ( smtp_proto.is_permanent ( e ) )
		e = smtp_proto.ErrorResponse ( 421, 'closing' )
		self.assertFalse ( e.is_permanent() )
		self.assertFalse ( smtp_proto.is_permanent ( ValueError ( 'x' ) ) )
		self.assertIsInstance ( smtp_proto.AuthError ( 535, 'nope' ), smtp_proto.ErrorResponse )

	def test_parse_extensions ( self ) -> None:
		test = self
		features, auth = smtp_proto.parse_extensions (
			'mx.example.com greets you\n'
			'8bitmime\n'
			'SIZE 35882577\n'
			'AUTH LOGIN PLAIN XOAUTH2\n'
			'\n'
			'size 1000\n'
			'DSN'
		)
		test.assertEqual ( features, {
			'8BITMIME': '',
			'SIZE': '1000',
			'AUTH': 'LOGIN PLAIN XOAUTH2',
			'DSN': '',
		} )
		test.assertEqual ( auth, [ 'LOGIN', 'PLAIN', 'XOAUTH2' ] )

		features, auth = smtp_proto.parse_extensions ( 'mx.example.com' )
		test.assertEqual ( ( features, auth ), ( {}, [] ) )

	def test_dot_stuffer ( self ) -> None:
		test = self

		def stuff ( *chunks: bytes ) -> bytes:
			ds = smtp_proto.DotStuffer()
			return b''.join ( ds.feed ( chunk ) for chunk in chunks ) + ds.finish()

		test.assertEqual ( stuff(), b'.\r\n' )
		test.assertEqual ( stuff ( b'hello\r\n' ), b'hello\r\n.\r\n' )
		test.assertEqual ( stuff ( b'hello' ), b'hello\r\n.\r\n' )
		test.assertEqual ( stuff ( b'.\r\n' ), b'..\r\n.\r\n' )
		test.assertEqual ( stuff ( b'a\n.b\n' ), b'a\r\n..b\r\n.\r\n' )
		# state carries across chunk boundaries
		test.assertEqual ( stuff ( b'a\r\n', b'.b' ), b'a\r\n..b\r\n.\r\n' )
		test.assertEqual ( stuff ( b'a\r', b'\n.b\r' ), b'a\r\n..b\r\n.\r\n' )
		test.assertEqual ( stuff ( b'a.', b'b\n' ), b'a.b\r\n.\r\n' )
		test.assertEqual ( stuff ( b'', b'.' ), b'..\r\n.\r\n' )

	def test_client_state ( self ) -> None:
		test = self
		cli = smtp_proto.Client ( False, 'mx.example.com' )
		test.assertEqual ( cli.state, smtp_proto.State.INIT )
		test.assertEqual ( cli.extension ( 'SIZE' ), ( False, '' ) )
		test.assertEqual ( cli.mail_params ( True, 100 ), [ 'SMTPUTF8' ] )
		cli.did_hello = True
		cli.esmtp_features = { '8BITMIME': '', 'SIZE': '0' }
		test.assertEqual ( cli.state, smtp_proto.State.HELLO_DONE )
		test.assertTrue ( cli.supports ( '8bitmime' ) )
		test.assertEqual ( cli.mail_params ( False, 100 ), [ 'BODY=8BITMIME', 'SIZE=100' ] )
		test.assertEqual ( cli.mail_params(), [ 'BODY=8BITMIME' ] )
		with test.assertRaises ( smtp_proto.SequenceError ):
			cli.check_phase ( 'RCPT', smtp_proto.Phase.MAIL_SENT )
		cli.phase = smtp_proto.Phase.IN_DATA
		test.assertEqual ( cli.state, smtp_proto.State.IN_DATA )
		cli.closed = True
		test.assertEqual ( cli.state, smtp_proto.State.CLOSED )
		with test.assertRaises ( smtp_proto.Closed ):
			cli.check_phase ( 'MAIL', smtp_proto.Phase.IN_DATA )
		info = cli.server_info()
		test.assertEqual ( ( info.name, info.tls, tuple ( info.auth ) ), ( 'mx.example.com', False, () ) )


if __name__ == '__main__':
	logging.basicConfig ( level = logging.DEBUG )
	unittest.main()
