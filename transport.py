# python imports:
from abc import ABCMeta, abstractmethod
import logging
import ssl
from typing import Any, Dict, NamedTuple, Optional as Opt

# email_submit imports:
from util import BYTES

logger = logging.getLogger ( __name__ )


class TlsState ( NamedTuple ):
	version: Opt[str] # ex: 'TLSv1.3'
	cipher: Opt[str]
	peer_cert: Opt[Dict[str,Any]] # as returned by SSLSocket.getpeercert()


def tls_state_of ( sslobj: Any ) -> TlsState:
	# works for ssl.SSLSocket, ssl.SSLObject and trio.SSLStream alike
	cipher = sslobj.cipher()
	return TlsState (
		version = sslobj.version(),
		cipher = cipher[0] if cipher else None,
		peer_cert = sslobj.getpeercert() or None,
	)


class Transport ( metaclass = ABCMeta ):
	ssl_context: Opt[ssl.SSLContext] = None

	def ssl_context_or_default_client ( self ) -> ssl.SSLContext:
		if self.ssl_context is None:
			self.ssl_context = ssl.create_default_context ( ssl.Purpose.SERVER_AUTH )
		return self.ssl_context


class SyncTransport ( Transport ):
	@abstractmethod
	def read ( self ) -> bytes:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.read()' )

	@abstractmethod
	def write ( self, data: BYTES ) -> None:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.write()' )

	@abstractmethod
	def starttls_client ( self, server_hostname: str ) -> None:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.starttls_client()' )

	def tls_state ( self ) -> Opt[TlsState]:
		return None

	@abstractmethod
	def close ( self ) -> None:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.close()' )


class AsyncTransport ( Transport ):
	@abstractmethod
	async def read ( self ) -> bytes:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.read()' )

	@abstractmethod
	async def write ( self, data: BYTES ) -> None:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.write()' )

	@abstractmethod
	async def starttls_client ( self, server_hostname: str ) -> None:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.starttls_client()' )

	def tls_state ( self ) -> Opt[TlsState]:
		return None

	@abstractmethod
	async def close ( self ) -> None:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.close()' )
