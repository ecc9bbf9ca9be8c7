from __future__ import annotations

# python imports:
import logging
import ssl
from types import TracebackType
from typing import (
	Iterable, List, NamedTuple, Optional as Opt, Tuple, Type,
)

# email_submit imports:
from base_proto import Closed
from event_handling import SyncClient
from mime_message import Message
from smtp_auth import AuthMechanism
import smtp_intl
import smtp_proto as proto
from smtp_proto import Phase, SequenceError
from transport import SyncTransport, TlsState
from util import BYTES

logger = logging.getLogger ( __name__ )


class BulkReportItem ( NamedTuple ):
	message_id: str
	sent: bool
	error: Opt[Exception]


class DataSink:
	'''
	Returned by Client.data(): write() the message, then close() it (or use it
	as a context manager). The payload is dot-stuffed on the way out.
	'''
	def __init__ ( self, client: Client ) -> None:
		self.client = client
		self.stuffer = proto.DotStuffer()
		self.closed = False
		self.response: Opt[proto.SuccessResponse] = None

	def write ( self, data: BYTES ) -> None:
		if self.closed:
			raise SequenceError ( 'write on a closed data sink' )
		chunk = self.stuffer.feed ( data )
		if chunk:
			self.client._write ( chunk )

	def close ( self ) -> proto.SuccessResponse:
		if self.closed:
			raise SequenceError ( 'data sink already closed' )
		self.closed = True
		self.response = self.client._request ( proto.DataEndRequest ( self.stuffer.finish() ) )
		return self.response

	def abort ( self ) -> None:
		# end the payload anyway so the session stays in step with the server
		log = logger.getChild ( 'DataSink.abort' )
		if self.closed:
			return
		self.closed = True
		try:
			self.client._request ( proto.DataEndRequest ( self.stuffer.finish(), complete = False ) )
		except Exception as e:
			log.warning ( f'finishing aborted DATA failed: {e!r}' )

	def __enter__ ( self ) -> DataSink:
		return self

	def __exit__ ( self,
		exc_type: Opt[Type[BaseException]],
		exc_val: Opt[BaseException],
		exc_tb: Opt[TracebackType],
	) -> None:
		if exc_type is None:
			self.close()
		else:
			self.abort()


class Client ( SyncClient ):
	protocls = proto.Client
	proto: proto.Client

	def __init__ ( self,
		transport: SyncTransport,
		tls: bool,
		server_hostname: str,
		local_hostname: str = 'localhost',
		*,
		auth_mechanism: Opt[AuthMechanism] = None,
	) -> None:
		super().__init__ ( transport, tls, server_hostname, local_hostname )
		self.auth_mechanism = auth_mechanism

	@property
	def state ( self ) -> proto.State:
		return self.proto.state

	def greeting ( self ) -> proto.SuccessResponse:
		return self._request ( proto.GreetingRequest() )

	#region hello

	def _hello ( self ) -> None:
		log = logger.getChild ( 'Client._hello' )
		p = self.proto
		p.check_open()
		if p.did_hello:
			if p.hello_error is not None:
				raise p.hello_error
			return
		p.did_hello = True
		try:
			try:
				self._request ( proto.EhloRequest ( p.local_hostname ) )
			except proto.ErrorResponse as e:
				log.warning ( f'EHLO refused ({e}), trying HELO' )
				self._request ( proto.HeloRequest ( p.local_hostname ) )
		except Exception as e:
			p.hello_error = e
			raise

	def hello ( self, local_hostname: str ) -> None:
		p = self.proto
		if p.did_hello or p.closed:
			raise SequenceError ( 'hello must come before any other session operation' )
		p.local_hostname = local_hostname
		self._hello()

	def extension ( self, name: str ) -> Tuple[bool,str]:
		self._hello()
		return self.proto.extension ( name )

	#endregion
	#region tls and auth

	def start_tls ( self, ssl_context: Opt[ssl.SSLContext] = None ) -> proto.EhloResponse:
		self._hello()
		if self.proto.tls:
			raise SequenceError ( 'TLS is already active' )
		if ssl_context is not None:
			self.transport.ssl_context = ssl_context
		self._request ( proto.StartTlsRequest() )
		return self._request ( proto.EhloRequest ( self.proto.local_hostname ) )

	def tls_connection_state ( self ) -> Opt[TlsState]:
		if not self.proto.tls:
			return None
		return self.transport.tls_state()

	def auth ( self, mechanism: Opt[AuthMechanism] = None ) -> proto.SuccessResponse:
		mechanism = mechanism or self.auth_mechanism
		if mechanism is None:
			raise SequenceError ( 'no auth mechanism configured' )
		self._hello()
		try:
			return self._request ( proto.AuthRequest ( mechanism, self.proto.server_info() ) )
		except Exception:
			self._terminate()
			raise

	def _terminate ( self ) -> None:
		log = logger.getChild ( 'Client._terminate' )
		if not self.proto.closed:
			try:
				self._request ( proto.QuitRequest() )
			except Exception as e:
				log.warning ( f'QUIT failed: {e!r}' )
		self.close()

	#endregion
	#region commands

	def verify ( self, address: str ) -> proto.VrfyResponse:
		self._hello()
		return self._request ( proto.VrfyRequest ( address ) )

	def mail ( self, address: str, smtputf8: bool = False, size: Opt[int] = None ) -> proto.SuccessResponse:
		self.proto.check_phase ( 'MAIL', Phase.IDLE, Phase.COMPLETE )
		self._hello()
		params = self.proto.mail_params ( smtputf8, size )
		return self._request ( proto.MailFromRequest ( address, params ) )

	def rcpt ( self, address: str ) -> proto.SuccessResponse:
		self.proto.check_phase ( 'RCPT', Phase.MAIL_SENT, Phase.RCPT_ACCEPTED )
		return self._request ( proto.RcptToRequest ( address ) )

	def data ( self ) -> DataSink:
		self.proto.check_phase ( 'DATA', Phase.RCPT_ACCEPTED )
		self._request ( proto.DataRequest() )
		return DataSink ( self )

	def reset ( self ) -> proto.SuccessResponse:
		self._hello()
		return self._request ( proto.RsetRequest() )

	def quit ( self ) -> proto.SuccessResponse:
		try:
			return self._request ( proto.QuitRequest() )
		finally:
			self.close()

	#endregion
	#region composites

	def mail_and_rcpt ( self, message: Message ) -> None:
		self._hello()
		mail_from, recipients, smtputf8 = smtp_intl.envelope ( message, self.proto.supports ( 'SMTPUTF8' ) )
		self.mail ( mail_from, smtputf8 )
		for rcpt in recipients:
			self.rcpt ( rcpt )

	def start_session ( self ) -> None:
		self._hello()
		if not self.proto.tls and self.proto.supports ( 'STARTTLS' ):
			self.start_tls()
		if self.auth_mechanism is not None and self.proto.supports ( 'AUTH' ):
			self.auth()

	def send_single ( self, message: Message ) -> proto.SuccessResponse:
		log = logger.getChild ( 'Client.send_single' )
		message.validate()
		try:
			self.mail_and_rcpt ( message )
			sink = self.data()
		except Exception:
			if not self.proto.closed:
				try:
					self.reset()
				except Exception as e:
					log.warning ( f'RSET failed: {e!r}' )
			raise
		with sink:
			for chunk in message.encode():
				sink.write ( chunk )
		assert sink.response is not None
		return sink.response

	def send_bulk ( self, messages: Iterable[Message] ) -> Tuple[List[BulkReportItem],Opt[Exception]]:
		'''
		Send every message over this one session and close it.

		Returns one report item per message, in order, plus the error QUIT
		ran into (None if it went fine). A failing message doesn't stop the
		ones after it. Errors setting up the session are raised.
		'''
		log = logger.getChild ( 'Client.send_bulk' )
		report: List[BulkReportItem] = []
		try:
			self.start_session()
			for message in messages:
				if not self.proto.closed and self.proto.phase not in ( Phase.IDLE, Phase.COMPLETE ):
					try:
						self.reset()
					except Exception as e:
						log.warning ( f'RSET after failed message failed: {e!r}' )
				try:
					self.send_single ( message )
				except Exception as e:
					log.warning ( f'{message!r} not sent: {e}' )
					report.append ( BulkReportItem ( message.message_id, False, e ) )
				else:
					report.append ( BulkReportItem ( message.message_id, True, None ) )
		except BaseException:
			self.close()
			raise
		quit_error: Opt[Exception] = None
		try:
			self.quit()
		except ( Closed, proto.ErrorResponse ) as e:
			quit_error = e
		return report, quit_error

	#endregion

	def on_StartTlsBeginEvent ( self, event: proto.StartTlsBeginEvent ) -> None:
		self.transport.starttls_client ( self.server_hostname )
