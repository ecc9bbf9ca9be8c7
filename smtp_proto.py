#region PROLOGUE --------------------------------------------------------------
from __future__ import annotations

# python imports:
from abc import abstractmethod
import binascii
import enum
import logging
import re
from typing import (
	Dict, Iterator, List, Optional as Opt, Sequence as Seq, Tuple, Type, Union,
)

# email_submit imports:
from base_proto import (
	BaseResponse, ResponseType, RequestT, Event, NeedDataEvent, SendDataEvent,
	Closed, RequestProtocolGenerator, ClientProtocol, ClientUtil,
)
from smtp_auth import AuthMechanism, ServerInfo
from util import BYTES, b2s, s2b, b64_encode, b64_decode

logger = logging.getLogger ( __name__ )


_r_eol = re.compile ( r'[\r\n]' )
_r_bare_lf = re.compile ( rb'(?<!\r)\n' )
_r_line_dot = re.compile ( rb'(?<=\n)\.' )

#endregion
#region RESPONSES -------------------------------------------------------------

class Response ( BaseResponse ):
	def __init__ ( self, code: int, *lines: str ) -> None:
		self.code = code
		assert lines and all ( isinstance ( line, str ) for line in lines ), f'invalid {lines=}'
		self.lines = lines
		super().__init__()

	@property
	def text ( self ) -> str:
		return '\n'.join ( self.lines )

	def is_success ( self ) -> bool:
		return self.code < 400

	@staticmethod
	def parse ( line: BYTES ) -> Union[Response,IntermediateResponse]:
		try:
			line = bytes ( line ).rstrip ( b'\r\n' )
			code = int ( line[:3] )
			assert 200 <= code <= 599, f'invalid {code=}'
			intermediate = line[3:4]
			assert intermediate in ( b'', b' ', b'-' ), f'invalid {intermediate=}'
			text = b2s ( line[4:], 'utf-8', 'replace' ).rstrip()
		except Exception as e:
			raise Closed ( f'malformed response from server {line=}: {e=}' ) from e
		if intermediate == b'-':
			return IntermediateResponse ( code, text )
		return Response ( code, text )

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}({self.code!r}, {", ".join(map(repr,self.lines))})'


class SuccessResponse ( Response ):
	def is_success ( self ) -> bool:
		return True


class IntermediateResponse ( Response ):
	def is_success ( self ) -> bool:
		return True


class ErrorResponse ( Response ):
	'''
	The server answered with a code the command was not expecting.
	5yz codes are permanent failures (RFC5321#4.2.1), anything else
	may succeed later and it's up to the caller whether to retry.
	'''
	def is_success ( self ) -> bool:
		return False

	def is_permanent ( self ) -> bool:
		return 500 <= self.code <= 599

	def __str__ ( self ) -> str:
		return f'{self.code} {self.text}'


class AuthError ( ErrorResponse ):
	# code is the server's reply to the aborted exchange or 0 if nothing was sent
	pass


class EhloResponse ( SuccessResponse ):
	esmtp_features: Dict[str,str]
	esmtp_auth: List[str]


class VrfyResponse ( SuccessResponse ):
	pass


class SequenceError ( Exception ):
	# an operation was called out of order; nothing was sent to the server
	pass


def is_permanent ( e: BaseException ) -> bool:
	return isinstance ( e, ErrorResponse ) and e.is_permanent()


client_util = ClientUtil ( Response.parse )

#endregion
#region SESSION STATE ---------------------------------------------------------

class Phase ( enum.Enum ):
	IDLE = 'idle'
	MAIL_SENT = 'mail-sent'
	RCPT_ACCEPTED = 'rcpt-accepted'
	IN_DATA = 'in-data'
	COMPLETE = 'complete'


class State ( enum.Enum ):
	INIT = 'init'
	HELLO_DONE = 'hello-done'
	TLS_ACTIVE = 'tls-active'
	AUTHENTICATED = 'authenticated'
	IDLE = 'idle'
	MAIL_SENT = 'mail-sent'
	RCPT_ACCEPTED = 'rcpt-accepted'
	IN_DATA = 'in-data'
	CLOSED = 'closed'


def parse_extensions ( text: str ) -> Tuple[Dict[str,str],List[str]]:
	'''
	Parse the text of an EHLO reply (lines joined with newlines).

	The first line is the server's greeting and is skipped. Every other line is
	a keyword optionally followed by a space and a parameter string. Keywords
	are uppercased, a repeated keyword overwrites the earlier one. AUTH's
	parameter is also split into the list of advertised mechanisms.
	'''
	features: Dict[str,str] = {}
	for line in text.split ( '\n' )[1:]:
		name, _, param = line.partition ( ' ' )
		if not name:
			continue
		features[name.upper()] = param
	auth = features['AUTH'].split() if 'AUTH' in features else []
	return features, auth


class DotStuffer:
	'''
	Escapes a DATA payload as it streams by (RFC5321#4.5.2).

	Bare LFs become CRLF, a '.' starting a line gets doubled. State carries
	over between chunks, finish() returns whatever is needed to end the last
	line plus the end-of-data marker.
	'''
	def __init__ ( self ) -> None:
		self._bol = True # next byte starts a line
		self._cr = False # last byte was a CR

	def feed ( self, data: BYTES ) -> bytes:
		data = bytes ( data )
		if not data:
			return b''
		head = b''
		if self._cr and data[:1] == b'\n':
			head, data = b'\n', data[1:]
			self._bol, self._cr = True, False
			if not data:
				return head
		data = _r_bare_lf.sub ( b'\r\n', data )
		data = _r_line_dot.sub ( b'..', data )
		if self._bol and data[:1] == b'.':
			data = b'.' + data
		self._bol = data.endswith ( b'\n' )
		self._cr = data.endswith ( b'\r' )
		return head + data

	def finish ( self ) -> bytes:
		if self._cr:
			tail = b'\n'
		elif not self._bol:
			tail = b'\r\n'
		else:
			tail = b''
		self._bol, self._cr = True, False
		return tail + b'.\r\n'


#endregion
#region EVENTS ----------------------------------------------------------------

class StartTlsBeginEvent ( Event ):
	pass

#endregion
#region REQUEST HELPERS -------------------------------------------------------

def _code_matches ( code: int, expect: int ) -> bool:
	# expect may be a prefix: 25 matches 250 and 251
	return str ( code ).startswith ( str ( expect ) )


def recv_reply ( event: NeedDataEvent ) -> Iterator[Event]:
	# collect a (possibly multiline) reply into event.response
	lines: List[str] = []
	while True:
		yield from client_util.recv ( event )
		r = event.response
		assert isinstance ( r, Response )
		lines.append ( r.lines[0] )
		if not isinstance ( r, IntermediateResponse ):
			break
	event.response = Response ( r.code, *lines )


def recv_expect ( event: NeedDataEvent, expect: int,
	responsecls: Type[SuccessResponse] = SuccessResponse,
) -> Iterator[Event]:
	yield from recv_reply ( event )
	r = event.response
	assert isinstance ( r, Response )
	if not _code_matches ( r.code, expect ):
		raise ErrorResponse ( r.code, *r.lines )
	event.response = responsecls ( r.code, *r.lines )

#endregion
#region REQUESTS --------------------------------------------------------------

class Request ( RequestT[ResponseType] ):
	def _client_protocol ( self, client: ClientProtocol ) -> RequestProtocolGenerator:
		assert isinstance ( client, Client )
		yield from self.client_protocol ( client )

	@abstractmethod
	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		cls = self.__class__
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.client_protocol()' )


class GreetingRequest ( Request[SuccessResponse] ):
	responsecls = SuccessResponse

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		event = NeedDataEvent()
		yield from recv_expect ( event, 220 )
		assert event.response is not None
		raise event.response


class HeloRequest ( Request[SuccessResponse] ):
	responsecls = SuccessResponse

	def __init__ ( self, domain: str ) -> None:
		self.domain = str ( domain ).strip()
		assert len ( self.domain ) > 0 and not _r_eol.search ( self.domain ), f'invalid {domain=}'

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		yield from client_util.send ( f'HELO {self.domain}\r\n' )
		event = NeedDataEvent()
		yield from recv_expect ( event, 250 )
		# plain HELO negotiates nothing, forget whatever an earlier EHLO said
		client.esmtp_features = {}
		client.esmtp_auth = []
		assert event.response is not None
		raise event.response


class EhloRequest ( Request[EhloResponse] ):
	responsecls = EhloResponse

	def __init__ ( self, domain: str ) -> None:
		self.domain = str ( domain ).strip()
		assert len ( self.domain ) > 0 and not _r_eol.search ( self.domain ), f'invalid {domain=}'

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		yield from client_util.send ( f'EHLO {self.domain}\r\n' )
		event = NeedDataEvent()
		yield from recv_expect ( event, 250, EhloResponse )
		r = event.response
		assert isinstance ( r, EhloResponse )
		r.esmtp_features, r.esmtp_auth = parse_extensions ( r.text )
		client.esmtp_features = dict ( r.esmtp_features )
		client.esmtp_auth = list ( r.esmtp_auth )
		raise r


class StartTlsRequest ( Request[SuccessResponse] ): # RFC3207
	responsecls = SuccessResponse

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		yield from client_util.send ( 'STARTTLS\r\n' )
		event = NeedDataEvent()
		yield from recv_expect ( event, 220 )
		yield from StartTlsBeginEvent().go()
		client.tls = True
		# RFC3207#4.2 everything learned before the handshake is void
		client.esmtp_features = None
		client.esmtp_auth = []
		assert event.response is not None
		raise event.response


class AuthRequest ( Request[SuccessResponse] ): # RFC4954
	responsecls = SuccessResponse

	def __init__ ( self, mechanism: AuthMechanism, server: ServerInfo ) -> None:
		self.mechanism = mechanism
		self.server = server

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}({self.mechanism!r})'

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		log = logger.getChild ( 'AuthRequest.client_protocol' )
		try:
			name, initial = self.mechanism.start ( self.server )
		except Exception as e:
			raise AuthError ( 0, f'authentication not started: {e}' ) from e
		log.debug ( f'C>AUTH {name} ...' )
		yield from client_util.send ( f'AUTH {name} {b64_encode(initial)}'.rstrip() + '\r\n', quiet = True )
		event = NeedDataEvent()
		while True:
			yield from recv_reply ( event )
			r = event.response
			assert isinstance ( r, Response )
			if r.code == 334:
				more = True
				try:
					challenge = b64_decode ( r.text )
				except binascii.Error as e:
					yield from self._abort ( event, f'malformed challenge: {e}' )
			elif r.code == 235:
				# the final text isn't a challenge so it isn't base64
				more = False
				challenge = s2b ( r.text, 'utf-8' )
			else:
				raise AuthError ( r.code, *r.lines )
			try:
				resp = self.mechanism.next ( challenge, more )
			except Exception as e:
				yield from self._abort ( event, str ( e ) )
			if not more:
				client.authenticated = True
				raise SuccessResponse ( r.code, *r.lines )
			if resp is None:
				yield from self._abort ( event, 'mechanism has no response' )
			log.debug ( 'C>(auth response)' )
			yield from client_util.send ( f'{b64_encode(resp)}\r\n', quiet = True )

	def _abort ( self, event: NeedDataEvent, reason: str ) -> Iterator[Event]:
		yield from client_util.send ( '*\r\n' )
		yield from recv_reply ( event )
		r = event.response
		assert isinstance ( r, Response )
		raise AuthError ( r.code, f'authentication aborted: {reason}', *r.lines )


class VrfyRequest ( Request[VrfyResponse] ):
	responsecls = VrfyResponse

	def __init__ ( self, address: str ) -> None:
		self.address = str ( address ).strip()
		assert len ( self.address ) > 0 and not _r_eol.search ( self.address ), f'invalid {address=}'

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		yield from client_util.send ( f'VRFY {self.address}\r\n' )
		event = NeedDataEvent()
		yield from recv_expect ( event, 250, VrfyResponse )
		assert event.response is not None
		raise event.response


class MailFromRequest ( Request[SuccessResponse] ):
	responsecls = SuccessResponse

	def __init__ ( self, mail_from: str, params: Seq[str] = () ) -> None:
		# an empty reverse-path is legal (bounces)
		self.mail_from = str ( mail_from ).strip()
		self.params = tuple ( params )
		assert not _r_eol.search ( self.mail_from ), f'invalid {mail_from=}'

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		line = ' '.join ( ( f'MAIL FROM:<{self.mail_from}>', *self.params ) )
		yield from client_util.send ( f'{line}\r\n' )
		event = NeedDataEvent()
		try:
			yield from recv_expect ( event, 250 )
		except ErrorResponse:
			client.phase = Phase.IDLE
			raise
		client.phase = Phase.MAIL_SENT
		client.transactions += 1
		assert event.response is not None
		raise event.response


class RcptToRequest ( Request[SuccessResponse] ):
	responsecls = SuccessResponse

	def __init__ ( self, rcpt_to: str ) -> None:
		self.rcpt_to = str ( rcpt_to ).strip()
		assert len ( self.rcpt_to ) > 0 and not _r_eol.search ( self.rcpt_to ), f'invalid {rcpt_to=}'

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		yield from client_util.send ( f'RCPT TO:<{self.rcpt_to}>\r\n' )
		event = NeedDataEvent()
		yield from recv_expect ( event, 25 ) # 250 or 251
		client.phase = Phase.RCPT_ACCEPTED
		assert event.response is not None
		raise event.response


class DataRequest ( Request[SuccessResponse] ):
	responsecls = SuccessResponse

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		yield from client_util.send ( 'DATA\r\n' )
		event = NeedDataEvent()
		yield from recv_expect ( event, 354 )
		client.phase = Phase.IN_DATA
		assert event.response is not None
		raise event.response


class DataEndRequest ( Request[SuccessResponse] ):
	responsecls = SuccessResponse

	def __init__ ( self, terminator: bytes, complete: bool = True ) -> None:
		self.terminator = terminator
		self.complete = complete

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		yield from SendDataEvent ( self.terminator ).go()
		event = NeedDataEvent()
		yield from recv_expect ( event, 250 )
		if self.complete:
			client.phase = Phase.COMPLETE
		assert event.response is not None
		raise event.response


class RsetRequest ( Request[SuccessResponse] ):
	responsecls = SuccessResponse

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		yield from client_util.send ( 'RSET\r\n' )
		event = NeedDataEvent()
		yield from recv_expect ( event, 250 )
		client.phase = Phase.IDLE
		assert event.response is not None
		raise event.response


class QuitRequest ( Request[SuccessResponse] ):
	responsecls = SuccessResponse

	def client_protocol ( self, client: Client ) -> RequestProtocolGenerator:
		yield from client_util.send ( 'QUIT\r\n' )
		event = NeedDataEvent()
		client.phase = Phase.IDLE
		yield from recv_expect ( event, 221 )
		assert event.response is not None
		raise event.response

#endregion
#region CLIENT ----------------------------------------------------------------

class Client ( ClientProtocol ):
	_MAXLINE = 8192 # more than 8 times larger than RFC 821, 4.5.3

	def __init__ ( self, tls: bool, server_hostname: str, local_hostname: str = 'localhost' ) -> None:
		super().__init__ ( tls )
		self.server_hostname = server_hostname
		self.local_hostname = local_hostname
		self.esmtp_features: Opt[Dict[str,str]] = None
		self.esmtp_auth: List[str] = []
		self.did_hello = False
		self.hello_error: Opt[Exception] = None
		self.authenticated = False
		self.closed = False
		self.phase = Phase.IDLE
		self.transactions = 0

	def extension ( self, name: str ) -> Tuple[bool,str]:
		if self.esmtp_features is None:
			return False, ''
		name = name.upper()
		return name in self.esmtp_features, self.esmtp_features.get ( name, '' )

	def supports ( self, name: str ) -> bool:
		return self.extension ( name )[0]

	def server_info ( self ) -> ServerInfo:
		return ServerInfo ( self.server_hostname, self.tls, tuple ( self.esmtp_auth ) )

	def mail_params ( self, smtputf8: bool = False, size: Opt[int] = None ) -> List[str]:
		params: List[str] = []
		if self.supports ( '8BITMIME' ):
			params.append ( 'BODY=8BITMIME' )
		if size is not None and self.supports ( 'SIZE' ):
			params.append ( f'SIZE={size}' )
		if smtputf8:
			params.append ( 'SMTPUTF8' )
		return params

	def check_open ( self ) -> None:
		if self.closed:
			raise Closed ( 'session is closed' )

	def check_phase ( self, operation: str, *allowed: Phase ) -> None:
		self.check_open()
		if self.phase not in allowed:
			raise SequenceError ( f'{operation} not allowed in phase {self.phase.value}' )

	@property
	def state ( self ) -> State:
		if self.closed:
			return State.CLOSED
		if self.phase == Phase.MAIL_SENT:
			return State.MAIL_SENT
		if self.phase == Phase.RCPT_ACCEPTED:
			return State.RCPT_ACCEPTED
		if self.phase == Phase.IN_DATA:
			return State.IN_DATA
		if not self.did_hello or self.hello_error is not None:
			return State.INIT
		if self.transactions:
			return State.IDLE
		if self.authenticated:
			return State.AUTHENTICATED
		if self.tls:
			return State.TLS_ACTIVE
		return State.HELLO_DONE

#endregion
