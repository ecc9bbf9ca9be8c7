from __future__ import annotations

# python imports:
import codecs
import datetime
from email.utils import format_datetime
from html.parser import HTMLParser
import logging
import re
import secrets
from typing import Iterable, Iterator, List, Optional as Opt, Sequence as Seq

# email_submit imports:
from mime_header import EmailAddress, HeaderList, join_formatted_addresses
from mime_part import MultipartWriter, Part, encode_body, normalize_encoding
from util import BYTES, split_address

logger = logging.getLogger ( __name__ )

_r_blank_runs = re.compile ( r'\n\s*\n\s*(\n\s*)+' )


class ValidationError ( Exception ):
	# the message can't be sent as described; nothing was sent to the server
	pass


class _TextExtractor ( HTMLParser ):
	_skip = ( 'script', 'style', 'head', 'title' )
	_breaks = ( 'br', 'p', 'div', 'tr', 'li', 'h1', 'h2', 'h3', 'h4', 'h5', 'h6', 'table' )

	def __init__ ( self ) -> None:
		super().__init__ ( convert_charrefs = True )
		self.chunks: List[str] = []
		self._skipping = 0

	def handle_starttag ( self, tag: str, attrs: object ) -> None:
		if tag in self._skip:
			self._skipping += 1
		elif tag in self._breaks:
			self.chunks.append ( '\n' )

	def handle_endtag ( self, tag: str ) -> None:
		if tag in self._skip:
			self._skipping = max ( 0, self._skipping - 1 )
		elif tag in self._breaks:
			self.chunks.append ( '\n' )

	def handle_data ( self, data: str ) -> None:
		if not self._skipping:
			self.chunks.append ( data )


def html_to_text ( html: str ) -> str:
	# strip tags, decode entities, drop script/style content
	parser = _TextExtractor()
	parser.feed ( html )
	parser.close()
	text = _r_blank_runs.sub ( '\n\n', ''.join ( parser.chunks ) )
	return text.strip()


class Message:
	'''
	An email to send: envelope overrides, headers, bodies and parts.

	message_id is generated on first encode if empty, and text is filled in
	from html (when sanitize is set and text is empty) the same way; nothing
	else is modified by encoding.
	'''
	def __init__ ( self, *,
		from_: EmailAddress,
		to: Seq[EmailAddress] = (),
		cc: Seq[EmailAddress] = (),
		bcc: Seq[EmailAddress] = (),
		subject: str = '',
		text: str = '',
		html: str = '',
		amp: str = '',
		charset: str = 'utf-8',
		encoding: str = 'quoted-printable',
		headers: Opt[HeaderList] = None,
		message_id: str = '',
		reply_to: Opt[EmailAddress] = None,
		recipient: str = '', # when set, the only RCPT TO address
		return_path: str = '', # when set, the MAIL FROM address
		sender: str = '',
		attachments: Iterable[Part] = (),
		images: Iterable[Part] = (),
		sanitize: bool = False,
	) -> None:
		self.from_ = from_
		self.to = list ( to )
		self.cc = list ( cc )
		self.bcc = list ( bcc )
		self.subject = subject
		self.text = text
		self.html = html
		self.amp = amp
		self.charset = charset
		self.encoding = encoding
		self.headers = headers if headers is not None else HeaderList()
		self.message_id = message_id
		self.reply_to = reply_to
		self.recipient = recipient
		self.return_path = return_path
		self.sender = sender
		self.attachments: List[Part] = list ( attachments )
		self.images: List[Part] = list ( images )
		self.sanitize = sanitize

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}(message_id={self.message_id!r}, subject={self.subject!r})'

	def add_attachment ( self, filename: str, content_type: str, body: BYTES ) -> Part:
		part = Part (
			content_type = content_type or 'application/octet-stream',
			body = body,
			filename = filename,
			content_disposition = 'attachment',
			encoding = 'base64',
		)
		self.attachments.append ( part )
		return part

	def add_embedded_image ( self, filename: str, content_type: str, content_id: str, body: BYTES ) -> Part:
		part = Part (
			content_type = content_type,
			body = body,
			filename = filename,
			encoding = 'base64',
			content_id = content_id,
		)
		self.images.append ( part )
		return part

	def validate ( self ) -> None:
		if not self.from_.address:
			raise ValidationError ( 'From address can not be empty' )
		if not ( self.recipient or self.to or self.cc or self.bcc ):
			raise ValidationError ( 'Recipient addresses can not be empty' )
		if self.charset:
			try:
				codecs.lookup ( self.charset )
			except LookupError:
				raise ValidationError ( f'Unknown charset {self.charset!r}' ) from None

	def is_multipart ( self ) -> bool:
		if self.amp:
			return True
		if self.attachments or self.images:
			return True
		# exactly one of text/html makes a single part message
		return bool ( self.text ) == bool ( self.html )

	def content_type ( self ) -> str:
		if self.is_multipart():
			if self.amp:
				return 'multipart/alternative'
			return 'multipart/mixed'
		if self.html and not self.text:
			return 'text/html'
		return 'text/plain'

	#region header synthesis

	def ensure_message_id ( self ) -> str:
		if not self.message_id:
			_, domain = split_address ( self.from_.address )
			self.message_id = f'{secrets.token_hex ( 16 )}@{domain}'
		return self.message_id

	def build_headers ( self, boundary: str = '', now: Opt[datetime.datetime] = None ) -> HeaderList:
		charset = self.charset
		if now is None:
			now = datetime.datetime.now().astimezone()
		headers = HeaderList()
		headers.add ( 'Message-Id', f'<{self.ensure_message_id()}>' )
		headers.add ( 'From', self.from_.format ( charset ) )
		if self.to:
			headers.add ( 'To', join_formatted_addresses ( self.to, charset ) )
		if self.cc:
			headers.add ( 'Cc', join_formatted_addresses ( self.cc, charset ) )
		if self.reply_to is not None and self.reply_to.address:
			headers.add ( 'Reply-To', self.reply_to.format ( charset ) )
		if self.sender:
			headers.add ( 'Sender', self.sender )
		headers.add ( 'Subject', self.subject, encoded = True )
		headers.add ( 'Date', format_datetime ( now ) )
		headers.add ( 'MIME-Version', '1.0' )
		if self.is_multipart():
			headers.add ( 'Content-Type', f'{self.content_type()}; boundary={boundary}' )
		else:
			headers.add ( 'Content-Type', f'{self.content_type()}; charset="{charset}"' )
			headers.add ( 'Content-Transfer-Encoding', normalize_encoding ( self.encoding ) )
		headers.extend ( self.headers )
		return headers

	#endregion
	#region body synthesis

	def _sanitized_text ( self ) -> str:
		if not self.text and self.sanitize and self.html:
			self.text = html_to_text ( self.html )
		return self.text

	def _text_part ( self, content_type: str, body: str ) -> Part:
		return Part (
			content_type = content_type,
			charset = self.charset,
			encoding = self.encoding,
			body = body.encode ( self.charset or 'utf-8', 'replace' ),
		)

	def _amp_body ( self, writer: MultipartWriter ) -> Iterator[bytes]:
		text = self._sanitized_text()
		if text:
			yield from self._text_part ( 'text/plain', text ).encode ( writer )
		yield from self._text_part ( 'text/x-amp-html', self.amp ).encode ( writer )
		yield from self._text_part ( 'text/html', self.html or text ).encode ( writer )

	def _alternative_body ( self, writer: MultipartWriter ) -> Iterator[bytes]:
		alt = MultipartWriter()
		yield writer.create_part ( HeaderList().add (
			'Content-Type', f'multipart/alternative; boundary={alt.boundary}',
		) )
		text = self._sanitized_text()
		yield from self._text_part ( 'text/plain', text ).encode ( alt )
		yield from self._text_part ( 'text/html', self.html or text ).encode ( alt )
		yield alt.close()

	def encode ( self, now: Opt[datetime.datetime] = None ) -> Iterator[bytes]:
		'''
		Serialize the message (headers and body) as a stream of byte chunks,
		ready to be written to a DATA sink.
		'''
		log = logger.getChild ( 'Message.encode' )
		if not self.is_multipart():
			yield self.build_headers ( now = now ).encode ( self.charset )
			body = self.text or self.html
			yield encode_body ( body.encode ( self.charset or 'utf-8', 'replace' ), self.encoding )
			return
		writer = MultipartWriter()
		yield self.build_headers ( writer.boundary, now ).encode ( self.charset )
		if self.amp:
			yield from self._amp_body ( writer )
		else:
			yield from self._alternative_body ( writer )
			for part in ( *self.attachments, *self.images ):
				log.debug ( f'{part!r}' )
				yield from part.encode ( writer )
		yield writer.close()

	def as_bytes ( self, now: Opt[datetime.datetime] = None ) -> bytes:
		return b''.join ( self.encode ( now ) )

	#endregion
