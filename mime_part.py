from __future__ import annotations

# python imports:
import base64
from email import quoprimime
import logging
import secrets
from typing import Iterator, Optional as Opt

# email_submit imports:
from mime_header import HeaderList
from util import BYTES

logger = logging.getLogger ( __name__ )

CRLF = b'\r\n'
_B64_LINE = 76 # RFC2045#6.8


def normalize_encoding ( encoding: Opt[str] ) -> str:
	# anything we don't recognize goes out as quoted-printable
	encoding = ( encoding or '' ).strip().lower()
	if encoding in ( 'base64', '8bit' ):
		return encoding
	return 'quoted-printable'


def encode_body ( body: BYTES, encoding: Opt[str] ) -> bytes:
	'''
	Transfer-encode a part body and terminate it with CRLF.

	base64 is wrapped at 76 columns, 8bit goes out verbatim, everything else is
	quoted-printable with soft line breaks and CRLF hard line breaks.
	'''
	body = bytes ( body )
	encoding = normalize_encoding ( encoding )
	if encoding == 'base64':
		encoded = base64.b64encode ( body )
		lines = [ encoded[i:i + _B64_LINE] for i in range ( 0, len ( encoded ), _B64_LINE ) ]
		data = CRLF.join ( lines )
	elif encoding == '8bit':
		data = body
	else:
		# quoprimime works on str, latin-1 maps every byte to the same code point
		data = quoprimime.body_encode ( body.decode ( 'latin-1' ), 76, '\r\n' ).encode ( 'ascii' )
	return data + CRLF


def new_boundary() -> str:
	return secrets.token_hex ( 30 )


class MultipartWriter:
	'''
	Frames the parts of one multipart container.

	Every writer gets its own random boundary so nested containers never share
	one. create_part() returns the delimiter and header block for the next part,
	close() returns the closing delimiter.
	'''
	def __init__ ( self, boundary: Opt[str] = None ) -> None:
		self.boundary = boundary or new_boundary()
		self._parts = 0
		self._closed = False

	def create_part ( self, headers: HeaderList, charset: str = 'utf-8' ) -> bytes:
		assert not self._closed, 'multipart writer already closed'
		delimiter = f'--{self.boundary}\r\n'
		if self._parts:
			delimiter = '\r\n' + delimiter
		self._parts += 1
		return delimiter.encode ( 'ascii' ) + headers.encode ( charset )

	def close ( self ) -> bytes:
		assert not self._closed, 'multipart writer already closed'
		self._closed = True
		closer = f'--{self.boundary}--\r\n'
		if self._parts:
			closer = '\r\n' + closer
		return closer.encode ( 'ascii' )


class Part:
	'''
	One MIME body part: an attachment, an embedded image or one of the text
	alternatives.
	'''
	def __init__ ( self, *,
		content_type: str,
		body: BYTES = b'',
		filename: str = '',
		content_disposition: str = '', # ex: 'attachment'
		encoding: str = '', # 'quoted-printable', 'base64' or '8bit'
		charset: str = '', # ex: 'utf-8'
		content_id: str = '',
	) -> None:
		self.content_type = content_type
		self.body = bytes ( body )
		self.filename = filename
		self.content_disposition = content_disposition
		self.encoding = encoding
		self.charset = charset
		self.content_id = content_id

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}(content_type={self.content_type!r}, filename={self.filename!r}, size={len(self.body)})'

	def headers ( self ) -> HeaderList:
		content_type = self.content_type
		if self.filename:
			content_type += f'; name="{self.filename}"'
		if self.charset:
			content_type += f'; charset="{self.charset}"'
		headers = HeaderList().add ( 'Content-Type', content_type )
		if self.content_disposition:
			headers.add ( 'Content-Disposition',
				f'{self.content_disposition}; filename="{self.filename}"; size={len(self.body)}',
			)
		headers.add ( 'Content-Transfer-Encoding', normalize_encoding ( self.encoding ) )
		if self.content_id:
			headers.add ( 'Content-ID', f'<{self.content_id}>' )
		return headers

	def encode ( self, writer: MultipartWriter ) -> Iterator[bytes]:
		yield writer.create_part ( self.headers() )
		yield encode_body ( self.body, self.encoding )
