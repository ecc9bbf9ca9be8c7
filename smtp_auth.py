from __future__ import annotations

# python imports:
from abc import ABCMeta, abstractmethod
import logging
from typing import (
	Callable, Dict, Iterable, NamedTuple, Optional as Opt, Sequence as Seq,
	Tuple, Type,
)

# email_submit imports:
from util import s2b

logger = logging.getLogger ( __name__ )


class ServerInfo ( NamedTuple ):
	name: str # server hostname the session was opened against
	tls: bool # whether the channel is encrypted
	auth: Seq[str] # mechanisms advertised by EHLO


class AuthMechanism ( metaclass = ABCMeta ):
	'''
	A SASL mechanism as seen by the AUTH exchange.

	start() is called once and returns the mechanism name plus an optional
	initial response. next() is called for every server reply: more=True for a
	334 challenge (already base64-decoded), more=False for the final 235 text.
	Returning None from next() while more=True cancels the exchange.
	Raising from either method aborts the exchange.
	'''
	@abstractmethod
	def start ( self, server: ServerInfo ) -> Tuple[str,Opt[bytes]]:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.start()' )

	@abstractmethod
	def next ( self, challenge: bytes, more: bool ) -> Opt[bytes]:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.next()' )


class AuthMechanismError ( Exception ):
	pass


_auth_plugins: Dict[str,Type[CredentialAuth]] = {}

def auth_plugin ( name: str ) -> Callable[[Type[CredentialAuth]],Type[CredentialAuth]]:
	def registrar ( cls: Type[CredentialAuth] ) -> Type[CredentialAuth]:
		assert name == name.upper() and ' ' not in name and len ( name ) <= 71, f'invalid auth mechanism {name=}'
		assert name not in _auth_plugins, f'duplicate auth mechanism {name!r}'
		cls.name = name
		_auth_plugins[name] = cls
		return cls
	return registrar


def pick_mechanism ( advertised: Iterable[str], uid: str, pwd: str ) -> Opt[CredentialAuth]:
	# first registered mechanism (in registration order) the server advertised
	offered = { mech.upper() for mech in advertised }
	for name, plugincls in _auth_plugins.items():
		if name in offered:
			return plugincls ( uid, pwd )
	return None


def _is_localhost ( name: str ) -> bool:
	return name in ( 'localhost', '127.0.0.1', '::1' )


class CredentialAuth ( AuthMechanism ):
	name: str
	tls_required: bool = True

	def __init__ ( self, uid: str, pwd: str, identity: str = '' ) -> None:
		self.uid = str ( uid )
		self.pwd = str ( pwd )
		self.identity = str ( identity )
		assert len ( self.uid ) > 0
		assert len ( self.pwd ) > 0

	def _check_server ( self, server: ServerInfo ) -> None:
		if self.tls_required and not server.tls and not _is_localhost ( server.name ):
			raise AuthMechanismError ( f'{self.name} refused: connection is not encrypted' )
		if server.auth and self.name not in server.auth:
			raise AuthMechanismError ( f'{self.name} not advertised by {server.name}' )

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}(uid={self.uid!r})'


@auth_plugin ( 'PLAIN' )
class PlainAuth ( CredentialAuth ): # RFC4616
	def start ( self, server: ServerInfo ) -> Tuple[str,Opt[bytes]]:
		self._check_server ( server )
		return self.name, s2b ( f'{self.identity}\0{self.uid}\0{self.pwd}', 'utf-8' )

	def next ( self, challenge: bytes, more: bool ) -> Opt[bytes]:
		if more:
			# everything was in the initial response
			raise AuthMechanismError ( 'unexpected server challenge' )
		return None


@auth_plugin ( 'LOGIN' )
class LoginAuth ( CredentialAuth ):
	def start ( self, server: ServerInfo ) -> Tuple[str,Opt[bytes]]:
		self._check_server ( server )
		return self.name, None

	def next ( self, challenge: bytes, more: bool ) -> Opt[bytes]:
		if not more:
			return None
		prompt = challenge.decode ( 'utf-8', 'replace' ).strip().lower()
		if prompt.startswith ( 'username' ):
			return s2b ( self.uid, 'utf-8' )
		if prompt.startswith ( 'password' ):
			return s2b ( self.pwd, 'utf-8' )
		raise AuthMechanismError ( f'unexpected server challenge {prompt!r}' )
