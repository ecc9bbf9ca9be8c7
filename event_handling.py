from __future__ import annotations

# python imports:
from abc import ABCMeta
import contextlib
import logging
import sys
from typing import Iterator, Type

# email_submit imports:
from base_proto import (
	RequestType, ResponseType, Event, SendDataEvent, ClientProtocol, Closed,
	ProtocolError,
)
from transport import SyncTransport, AsyncTransport
from util import BYTES, b2s

logger = logging.getLogger ( __name__ )


@contextlib.contextmanager
def _event_exception_safety ( event: Event ) -> Iterator[None]:
	# hand the failure back to the request generator that yielded the event
	try:
		yield
	except Exception:
		event.exc_info = sys.exc_info()


@contextlib.contextmanager
def close_if_oserror() -> Iterator[None]:
	try:
		yield
	except OSError as e:
		raise Closed ( repr ( e ) ) from e


def _log_chunk ( event: SendDataEvent, chunk: BYTES ) -> None:
	log = logger.getChild ( 'on_SendDataEvent' )
	if not event.quiet:
		log.debug ( f'C>{b2s(chunk,"utf-8","replace").rstrip()}' )


class SyncEventHandler:
	transport: SyncTransport

	def on_SendDataEvent ( self, event: SendDataEvent ) -> None:
		for chunk in event.chunks:
			_log_chunk ( event, chunk )
			self.transport.write ( chunk )

	def _on_event ( self, event: Event ) -> None:
		with _event_exception_safety ( event ):
			func = getattr ( self, f'on_{type(event).__name__}' )
			func ( event )


class AsyncEventHandler:
	transport: AsyncTransport

	async def on_SendDataEvent ( self, event: SendDataEvent ) -> None:
		for chunk in event.chunks:
			_log_chunk ( event, chunk )
			await self.transport.write ( chunk )

	async def _on_event ( self, event: Event ) -> None:
		with _event_exception_safety ( event ):
			func = getattr ( self, f'on_{type(event).__name__}' )
			await func ( event )


class Client ( metaclass = ABCMeta ):
	protocls: Type[ClientProtocol]
	proto: ClientProtocol


class SyncClient ( SyncEventHandler, Client ):
	def __init__ ( self,
		transport: SyncTransport,
		tls: bool,
		server_hostname: str,
		local_hostname: str = 'localhost',
	) -> None:
		self.transport = transport
		self.server_hostname = server_hostname
		self.proto = self.protocls ( tls, server_hostname, local_hostname ) # type: ignore

	def _request ( self, request: RequestType[ResponseType] ) -> ResponseType:
		log = logger.getChild ( 'SyncClient._request' )
		self.proto.check_open() # type: ignore
		try:
			for event in self.proto.send ( request ):
				self._on_event ( event )
			while not request.base_response:
				with close_if_oserror():
					data: bytes = self.transport.read()
				log.debug ( f'S>{b2s(data,"utf-8","replace").rstrip()}' )
				for event in self.proto.receive ( data ):
					self._on_event ( event )
		except Closed:
			self.close()
			raise
		except ProtocolError as e:
			self.close()
			raise Closed ( repr ( e ) ) from e
		return request.response

	def _write ( self, data: BYTES ) -> None:
		self.proto.check_open() # type: ignore
		try:
			with close_if_oserror():
				self.transport.write ( data )
		except Closed:
			self.close()
			raise

	def close ( self ) -> None:
		if self.proto.closed: # type: ignore
			return
		self.proto.closed = True # type: ignore
		self.transport.close()


class AsyncClient ( AsyncEventHandler, Client ):
	def __init__ ( self,
		transport: AsyncTransport,
		tls: bool,
		server_hostname: str,
		local_hostname: str = 'localhost',
	) -> None:
		self.transport = transport
		self.server_hostname = server_hostname
		self.proto = self.protocls ( tls, server_hostname, local_hostname ) # type: ignore

	async def _request ( self, request: RequestType[ResponseType] ) -> ResponseType:
		log = logger.getChild ( 'AsyncClient._request' )
		self.proto.check_open() # type: ignore
		try:
			for event in self.proto.send ( request ):
				await self._on_event ( event )
			while not request.base_response:
				with close_if_oserror():
					data: bytes = await self.transport.read()
				log.debug ( f'S>{b2s(data,"utf-8","replace").rstrip()}' )
				for event in self.proto.receive ( data ):
					await self._on_event ( event )
		except Closed:
			await self.close()
			raise
		except ProtocolError as e:
			await self.close()
			raise Closed ( repr ( e ) ) from e
		return request.response

	async def _write ( self, data: BYTES ) -> None:
		self.proto.check_open() # type: ignore
		try:
			with close_if_oserror():
				await self.transport.write ( data )
		except Closed:
			await self.close()
			raise

	async def close ( self ) -> None:
		if self.proto.closed: # type: ignore
			return
		self.proto.closed = True # type: ignore
		await self.transport.close()
