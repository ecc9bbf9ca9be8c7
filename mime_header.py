from __future__ import annotations

# python imports:
from email.charset import Charset, QP
import itertools
import logging
from typing import Iterable, Iterator, List, Optional as Opt

# email_submit imports:
from util import s2b

logger = logging.getLogger ( __name__ )

_MAX_WORD = 75 # RFC2047#2 encoded-word length limit


def needs_encoding ( s: str ) -> bool:
	return any ( ( c < ' ' and c != '\t' ) or c > '~' for c in s )


def word_encode ( charset: str, s: str ) -> str:
	'''
	RFC2047 Q-encode s if it contains anything besides printable ASCII.

	Long values are split into several encoded-words separated by folding
	whitespace. The output only depends on the input.
	'''
	if not needs_encoding ( s ):
		return s
	try:
		cs = Charset ( charset or 'utf-8' )
		s.encode ( cs.output_codec or 'us-ascii' )
	except ( LookupError, UnicodeEncodeError ):
		cs = Charset ( 'utf-8' )
	cs.header_encoding = QP
	words = cs.header_encode_lines ( s, itertools.repeat ( _MAX_WORD ) )
	return '\r\n '.join ( word for word in words if word )


class Header:
	def __init__ ( self, name: str, value: str, encoded: bool = False ) -> None:
		self.name = name
		self.value = value
		self.encoded = encoded # value needs RFC2047 encoding

	def format ( self, charset: str ) -> str:
		value = word_encode ( charset, self.value ) if self.encoded else self.value
		return f'{self.name}: {value}\r\n'

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}({self.name!r}, {self.value!r}, encoded={self.encoded!r})'


class HeaderList:
	# ordered, duplicate names are kept in insertion order
	def __init__ ( self, headers: Iterable[Header] = () ) -> None:
		self._headers: List[Header] = list ( headers )

	def add ( self, name: str, value: str, encoded: bool = False ) -> HeaderList:
		self._headers.append ( Header ( name, value, encoded ) )
		return self

	def extend ( self, headers: Opt[Iterable[Header]] ) -> HeaderList:
		if headers is not None:
			self._headers.extend ( headers )
		return self

	def get ( self, name: str ) -> Opt[Header]:
		name = name.lower()
		for header in self._headers:
			if header.name.lower() == name:
				return header
		return None

	def get_all ( self, name: str ) -> List[Header]:
		name = name.lower()
		return [ header for header in self._headers if header.name.lower() == name ]

	def __iter__ ( self ) -> Iterator[Header]:
		return iter ( self._headers )

	def __len__ ( self ) -> int:
		return len ( self._headers )

	def encode ( self, charset: str ) -> bytes:
		# the header block including the blank line that ends it
		text = ''.join ( header.format ( charset ) for header in self._headers )
		return s2b ( text + '\r\n', 'utf-8' )


class EmailAddress:
	def __init__ ( self, address: str, name: str = '' ) -> None:
		self.address = address
		self.name = name

	def __str__ ( self ) -> str:
		if self.name:
			return f'{self.name} <{self.address}>'
		return self.address

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}({self.address!r}, {self.name!r})'

	def __eq__ ( self, other: object ) -> bool:
		if not isinstance ( other, EmailAddress ):
			return NotImplemented
		return ( self.address, self.name ) == ( other.address, other.name )

	def format ( self, charset: str ) -> str:
		# RFC5322 mailbox: quoted display name, or encoded-words if it isn't plain ASCII
		if not self.name:
			return self.address
		if needs_encoding ( self.name ):
			display = word_encode ( charset, self.name )
		else:
			escaped = self.name.replace ( '\\', '\\\\' ).replace ( '"', '\\"' )
			display = f'"{escaped}"'
		return f'{display} <{self.address}>'


def join_addresses ( addresses: Iterable[EmailAddress] ) -> str:
	return ', '.join ( str ( address ) for address in addresses )


def join_formatted_addresses ( addresses: Iterable[EmailAddress], charset: str ) -> str:
	return ', '.join ( address.format ( charset ) for address in addresses )
