from __future__ import annotations

# python imports:
import logging
from typing import Iterable, List, Tuple

# email_submit imports:
from mime_message import Message
from smtp_proto import ErrorResponse
from util import is_ascii, split_address

logger = logging.getLogger ( __name__ )


class AddressError ( ErrorResponse ):
	# the address can't be expressed to this server, never worth retrying
	def __init__ ( self, address: str, reason: str ) -> None:
		self.address = address
		super().__init__ ( 599, reason )


def classify ( address: str, smtputf8: bool ) -> Tuple[str,bool]:
	'''
	Decide how an envelope address goes on the wire.

	Returns the address to use and whether MAIL needs the SMTPUTF8 parameter.
	ASCII passes through. Non-ASCII passes through when the server supports
	SMTPUTF8 (RFC6531). Otherwise only a non-ASCII domain can be saved, by
	converting it to IDNA; a non-ASCII local part raises AddressError.
	'''
	if is_ascii ( address ):
		return address, False

	# the server may still want an IDNA domain, but if it speaks SMTPUTF8 it
	# has to cope with UTF-8 either way
	if smtputf8:
		return address, True

	user, domain = split_address ( address )
	if not is_ascii ( user ):
		raise AddressError ( address, 'local part is not ASCII but server does not support SMTPUTF8' )

	try:
		domain = domain.encode ( 'idna' ).decode ( 'ascii' )
	except UnicodeError as e:
		log = logger.getChild ( 'classify' )
		log.debug ( f'IDNA conversion of {domain!r} failed: {e!r}' )
		raise AddressError ( address, 'non-ASCII domain is not IDNA safe' ) from e
	return f'{user}@{domain}', False


def _classify_all ( addresses: Iterable[str], smtputf8: bool ) -> Tuple[List[str],bool]:
	result: List[str] = []
	needed = False
	for address in addresses:
		use, needs = classify ( address, smtputf8 )
		result.append ( use )
		needed = needed or needs
	return result, needed


def envelope ( message: Message, smtputf8: bool ) -> Tuple[str,List[str],bool]:
	'''
	Envelope sender, envelope recipients and whether SMTPUTF8 is needed.

	The sender is return_path if set, else the From address. The recipients
	are the single recipient override if set, else To then Cc then Bcc.
	'''
	mail_from = message.return_path or message.from_.address
	( mail_from, ), from_needs = _classify_all ( ( mail_from, ), smtputf8 )
	if message.recipient:
		recipients = [ message.recipient ]
	else:
		recipients = [
			rcpt.address
			for rcpt in ( *message.to, *message.cc, *message.bcc )
		]
	recipients, to_needs = _classify_all ( recipients, smtputf8 )
	return mail_from, recipients, from_needs or to_needs
