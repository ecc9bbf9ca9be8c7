from __future__ import annotations

# python imports:
import logging
import socket
import ssl
from typing import Optional as Opt, Type

# email_submit imports:
from transport import SyncTransport, TlsState, tls_state_of
from util import BYTES

logger = logging.getLogger ( __name__ )


class SocketTransport ( SyncTransport ):
	sock: socket.socket

	def __init__ ( self, sock: socket.socket ) -> None:
		self.sock = sock

	@classmethod
	def connect ( cls: Type[SocketTransport],
		hostname: str,
		port: int,
		tls: bool,
		timeout: Opt[float] = None,
		ssl_context: Opt[ssl.SSLContext] = None,
	) -> SocketTransport:
		log = logger.getChild ( 'SocketTransport.connect' )

		for *params, _, address in socket.getaddrinfo ( hostname, port, type = socket.SOCK_STREAM ):
			sock = socket.socket ( *params )
			sock.settimeout ( timeout )
			try:
				sock.connect ( address )
			except OSError as e:
				log.warning ( f'Error connecting to {address=}: {e!r}' )
				sock.close()
				continue
			else:
				self = cls ( sock )
				self.ssl_context = ssl_context
				if tls:
					try:
						self.starttls_client ( hostname )
					except BaseException:
						sock.close()
						raise
				return self
		raise ConnectionError ( f'Unable to connect to {hostname=} {port=}' )

	def read ( self ) -> bytes:
		return self.sock.recv ( 4096 )

	def write ( self, data: BYTES ) -> None:
		self.sock.sendall ( data )

	def starttls_client ( self, server_hostname: str ) -> None:
		context = self.ssl_context_or_default_client()

		# wrap_socket() completes the handshake before returning
		self.sock = context.wrap_socket (
			self.sock,
			server_hostname = server_hostname,
		)

	def tls_state ( self ) -> Opt[TlsState]:
		if not isinstance ( self.sock, ssl.SSLSocket ):
			return None
		return tls_state_of ( self.sock )

	def close ( self ) -> None:
		self.sock.close()
