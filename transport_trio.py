from __future__ import annotations

# python imports:
import contextlib
import logging
import ssl
import trio # pip install trio
from typing import Iterator, Optional as Opt, Type

# email_submit imports:
from transport import AsyncTransport, TlsState, tls_state_of
from util import BYTES

logger = logging.getLogger ( __name__ )


@contextlib.contextmanager
def trio_broken ( self: object, text: str ) -> Iterator[None]:
	# trio reports dead streams with its own exceptions, the sessions expect OSError
	try:
		yield
	except ( trio.BrokenResourceError, trio.ClosedResourceError ) as e:
		cls = self.__class__
		raise ConnectionError ( f'{cls.__module__}.{cls.__name__} stream broken {text}: {e!r}' ) from e

class TrioTransport ( AsyncTransport ):
	happy_eyeballs_delay: float = 0.25 # same as trio's default
	timeout: float = 60.0 # per read/write, override per instance or subclass
	close_timeout: float = 0.5
	stream: trio.abc.Stream

	def __init__ ( self, stream: trio.abc.Stream ) -> None:
		self.stream = stream

	@classmethod
	async def connect ( cls: Type[TrioTransport],
		hostname: str,
		port: int,
		tls: bool,
		ssl_context: Opt[ssl.SSLContext] = None,
	) -> TrioTransport:
		stream = await trio.open_tcp_stream ( hostname, port,
			happy_eyeballs_delay = cls.happy_eyeballs_delay,
		)
		self = cls ( stream )
		self.ssl_context = ssl_context
		if tls:
			try:
				await self.starttls_client ( hostname )
			except BaseException:
				await self.close()
				raise
		return self

	async def read ( self ) -> bytes:
		with trio.move_on_after ( self.timeout ), trio_broken ( self, 'reading' ):
			return await self.stream.receive_some()
		raise TimeoutError ( f'{type(self).__module__}.{type(self).__name__} timeout waiting to read data' )

	async def write ( self, data: BYTES ) -> None:
		with trio.move_on_after ( self.timeout ), trio_broken ( self, 'writing' ):
			await self.stream.send_all ( data )
			return
		raise TimeoutError ( f'{type(self).__module__}.{type(self).__name__} timeout waiting to write {len(data)} bytes' )

	async def starttls_client ( self, server_hostname: str ) -> None:
		context = self.ssl_context_or_default_client()

		stream = trio.SSLStream (
			self.stream,
			ssl_context = context,
			server_hostname = server_hostname,
		)
		with trio.move_on_after ( self.timeout ), trio_broken ( self, 'during TLS handshake' ):
			await stream.do_handshake()
			self.stream = stream
			return
		raise TimeoutError ( f'{type(self).__module__}.{type(self).__name__} timeout during TLS handshake' )

	def tls_state ( self ) -> Opt[TlsState]:
		if not isinstance ( self.stream, trio.SSLStream ):
			return None
		return tls_state_of ( self.stream )

	async def close ( self ) -> None:
		with trio.move_on_after ( self.close_timeout ):
			await self.stream.aclose()
