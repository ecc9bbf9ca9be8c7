# python imports:
import logging
from pathlib import Path
import socket
import ssl
import sys
import threading
from typing import Callable, List
import unittest

if __name__ == '__main__': # pragma: no cover
	sys.path.append ( str ( Path ( __file__ ).parent.parent.absolute() ) )

# email_submit imports:
import itrustme
from mime_header import EmailAddress
from mime_message import Message
from smtp_auth import PlainAuth
import smtp_proto as proto
import smtp_socket
from transport_socket import SocketTransport

logger = logging.getLogger ( __name__ )

trust = itrustme.ServerOnly (
	server_hostname = 'mx.example.com',
)
local_trust = itrustme.ServerOnly (
	server_hostname = '127.0.0.1',
)


class LineServer:
	# blocking counterpart of the client, one scripted conversation per thread
	def __init__ ( self, sock: socket.socket ) -> None:
		self.sock = sock
		self.buf = b''
		self.received: List[bytes] = []

	def readline ( self ) -> bytes:
		while b'\n' not in self.buf:
			data = self.sock.recv ( 4096 )
			if not data:
				raise EOFError ( 'client went away' )
			self.buf += data
		line, _, self.buf = self.buf.partition ( b'\n' )
		self.received.append ( line + b'\n' )
		return line + b'\n'

	def read_data ( self ) -> bytes:
		while b'\r\n.\r\n' not in self.buf:
			data = self.sock.recv ( 4096 )
			if not data:
				raise EOFError ( 'client went away' )
			self.buf += data
		body, _, self.buf = self.buf.partition ( b'\r\n.\r\n' )
		return body

	def expect ( self, line: bytes, reply: bytes ) -> None:
		got = self.readline()
		assert got.startswith ( line ), f'expected {line!r} got {got!r}'
		self.sock.sendall ( reply )

	def starttls ( self, authority: itrustme.ServerOnly = trust ) -> None:
		self.sock = authority.server_context().wrap_socket ( self.sock, server_side = True )


def run_server ( sock: socket.socket, script: Callable[[LineServer],None], errors: List[BaseException] ) -> threading.Thread:
	srv = LineServer ( sock )
	def _run() -> None:
		try:
			script ( srv )
		except BaseException as e: # pragma: no cover
			logger.exception ( 'server script failed:' )
			errors.append ( e )
		finally:
			srv.sock.close()
	thread = threading.Thread ( target = _run, daemon = True )
	thread.start()
	return thread


class Tests ( unittest.TestCase ):
	def test_starttls_session ( self ) -> None:
		bodies: List[bytes] = []
		errors: List[BaseException] = []

		def script ( srv: LineServer ) -> None:
			srv.sock.sendall ( b'220 mx.example.com ESMTP\r\n' )
			srv.expect ( b'EHLO localhost', b'250-mx.example.com\r\n250-STARTTLS\r\n250 SIZE 1000000\r\n' )
			srv.expect ( b'STARTTLS', b'220 2.0.0 ready\r\n' )
			srv.starttls()
			srv.expect ( b'EHLO localhost', b'250-mx.example.com\r\n250 SIZE 1000000\r\n' )
			srv.expect ( b'MAIL FROM:<bounce@example.com>', b'250 ok\r\n' )
			srv.expect ( b'RCPT TO:<only@example.com>', b'250 ok\r\n' )
			srv.expect ( b'DATA', b'354 go ahead\r\n' )
			bodies.append ( srv.read_data() )
			srv.sock.sendall ( b'250 queued\r\n' )
			srv.expect ( b'QUIT', b'221 bye\r\n' )

		client_sock, server_sock = socket.socketpair()
		thread = run_server ( server_sock, script, errors )
		xport = SocketTransport ( client_sock )
		cli = smtp_socket.Client ( xport, False, 'mx.example.com' )
		try:
			cli.greeting()
			cli.start_tls ( trust.client_context() )
			self.assertEqual ( cli.extension ( 'SIZE' ), ( True, '1000000' ) )
			state = cli.tls_connection_state()
			assert state is not None
			self.assertTrue ( ( state.version or '' ).startswith ( 'TLS' ) )
			self.assertIsNotNone ( state.cipher )
			msg = Message (
				from_ = EmailAddress ( 'sender@example.com' ),
				to = [ EmailAddress ( 'a@example.com' ), EmailAddress ( 'b@example.com' ) ],
				recipient = 'only@example.com',
				return_path = 'bounce@example.com',
				subject = 'over tls',
				html = '<b>bold</b>',
			)
			cli.send_single ( msg )
			cli.quit()
		finally:
			cli.close()
		thread.join ( 5 )
		self.assertEqual ( errors, [] )
		self.assertIn ( b'\r\nContent-Type: text/html; charset="utf-8"\r\n', bodies[0] )
		self.assertIn ( b'\r\nTo: a@example.com, b@example.com\r\n', bodies[0] )

	def test_starttls_bad_certificate ( self ) -> None:
		errors: List[BaseException] = []

		def script ( srv: LineServer ) -> None:
			srv.sock.sendall ( b'220 mx.example.com ESMTP\r\n' )
			srv.expect ( b'EHLO localhost', b'250-mx.example.com\r\n250 STARTTLS\r\n' )
			srv.expect ( b'STARTTLS', b'220 2.0.0 ready\r\n' )
			try:
				srv.starttls()
			except ( ssl.SSLError, OSError ):
				pass

		client_sock, server_sock = socket.socketpair()
		thread = run_server ( server_sock, script, errors )
		cli = smtp_socket.Client ( SocketTransport ( client_sock ), False, 'mx.example.com' )
		cli.greeting()
		# the default context doesn't trust the throwaway CA
		with self.assertRaises ( proto.Closed ):
			cli.start_tls()
		self.assertEqual ( cli.state, proto.State.CLOSED )
		thread.join ( 5 )

	def test_connect ( self ) -> None:
		errors: List[BaseException] = []
		listener = socket.socket ( socket.AF_INET, socket.SOCK_STREAM )
		listener.bind ( ( '127.0.0.1', 0 ) )
		listener.listen ( 1 )
		port = listener.getsockname()[1]
		threads: List[threading.Thread] = []

		def script ( srv: LineServer ) -> None:
			srv.sock.sendall ( b'220 mx.example.com ESMTP\r\n' )
			srv.expect ( b'EHLO localhost', b'250 mx.example.com\r\n' )
			srv.expect ( b'VRFY postmaster', b'252 2.1.5 cannot verify\r\n' )
			srv.expect ( b'QUIT', b'221 bye\r\n' )

		def accept() -> None:
			sock, _ = listener.accept()
			threads.append ( run_server ( sock, script, errors ) )

		acceptor = threading.Thread ( target = accept, daemon = True )
		acceptor.start()
		try:
			cli = smtp_socket.Client.connect ( '127.0.0.1', port, False, timeout = 5 )
			with self.assertRaises ( proto.ErrorResponse ) as cm:
				cli.verify ( 'postmaster' )
			self.assertEqual ( cm.exception.code, 252 )
			cli.quit()
		finally:
			acceptor.join ( 5 )
			listener.close()
		for thread in threads:
			thread.join ( 5 )
		self.assertEqual ( errors, [] )

	def test_send_mail ( self ) -> None:
		bodies: List[bytes] = []
		errors: List[BaseException] = []
		listener = socket.socket ( socket.AF_INET, socket.SOCK_STREAM )
		listener.bind ( ( '127.0.0.1', 0 ) )
		listener.listen ( 1 )
		port = listener.getsockname()[1]
		threads: List[threading.Thread] = []

		def script ( srv: LineServer ) -> None:
			srv.sock.sendall ( b'220 mx.example.com ESMTP\r\n' )
			srv.expect ( b'EHLO client.example.org', b'250-mx.example.com\r\n250-STARTTLS\r\n250 AUTH PLAIN\r\n' )
			srv.expect ( b'STARTTLS', b'220 2.0.0 ready\r\n' )
			srv.starttls ( local_trust )
			srv.expect ( b'EHLO client.example.org', b'250-mx.example.com\r\n250 AUTH PLAIN\r\n' )
			srv.expect ( b'AUTH PLAIN AHVzZXIAcGFzcw==', b'235 2.7.0 ok\r\n' )
			srv.expect ( b'MAIL FROM:<sender@example.com>', b'250 ok\r\n' )
			srv.expect ( b'RCPT TO:<rcpt@example.com>', b'250 ok\r\n' )
			srv.expect ( b'DATA', b'354 go ahead\r\n' )
			bodies.append ( srv.read_data() )
			srv.sock.sendall ( b'250 2.0.0 queued as 1234\r\n' )
			srv.expect ( b'QUIT', b'221 bye\r\n' )

		def accept() -> None:
			sock, _ = listener.accept()
			threads.append ( run_server ( sock, script, errors ) )

		acceptor = threading.Thread ( target = accept, daemon = True )
		acceptor.start()
		msg = Message (
			from_ = EmailAddress ( 'sender@example.com' ),
			to = [ EmailAddress ( 'rcpt@example.com' ) ],
			subject = 'one shot',
			text = 'just the one',
		)
		try:
			r = smtp_socket.send_mail ( '127.0.0.1', port, msg,
				local_hostname = 'client.example.org',
				auth_mechanism = PlainAuth ( 'user', 'pass' ),
				ssl_context = local_trust.client_context(),
				timeout = 5,
			)
		finally:
			acceptor.join ( 5 )
			listener.close()
		for thread in threads:
			thread.join ( 5 )
		self.assertEqual ( errors, [] )
		self.assertEqual ( r.code, 250 )
		self.assertIn ( b'\r\nSubject: one shot\r\n', b'\r\n' + bodies[0] )

	def test_send_mail_refused ( self ) -> None:
		errors: List[BaseException] = []
		listener = socket.socket ( socket.AF_INET, socket.SOCK_STREAM )
		listener.bind ( ( '127.0.0.1', 0 ) )
		listener.listen ( 1 )
		port = listener.getsockname()[1]
		threads: List[threading.Thread] = []

		def script ( srv: LineServer ) -> None:
			srv.sock.sendall ( b'220 mx.example.com ESMTP\r\n' )
			srv.expect ( b'EHLO localhost', b'250 mx.example.com\r\n' )
			srv.expect ( b'MAIL FROM:<sender@example.com>', b'250 ok\r\n' )
			srv.expect ( b'RCPT TO:<nobody@example.com>', b'550 5.1.1 no such user\r\n' )
			srv.expect ( b'RSET', b'250 flushed\r\n' )

		def accept() -> None:
			sock, _ = listener.accept()
			threads.append ( run_server ( sock, script, errors ) )

		acceptor = threading.Thread ( target = accept, daemon = True )
		acceptor.start()
		msg = Message (
			from_ = EmailAddress ( 'sender@example.com' ),
			to = [ EmailAddress ( 'nobody@example.com' ) ],
			text = 'nope',
		)
		try:
			with self.assertRaises ( proto.ErrorResponse ) as cm:
				smtp_socket.send_mail ( '127.0.0.1', port, msg, timeout = 5 )
			self.assertEqual ( cm.exception.code, 550 )
		finally:
			acceptor.join ( 5 )
			listener.close()
		for thread in threads:
			thread.join ( 5 )
		self.assertEqual ( errors, [] )

	def test_connect_refused ( self ) -> None:
		listener = socket.socket ( socket.AF_INET, socket.SOCK_STREAM )
		listener.bind ( ( '127.0.0.1', 0 ) )
		port = listener.getsockname()[1]
		listener.close()
		with self.assertRaises ( proto.Closed ):
			smtp_socket.Client.connect ( '127.0.0.1', port, False, timeout = 5 )


if __name__ == '__main__':
	logging.basicConfig ( level = logging.DEBUG )
	unittest.main()
