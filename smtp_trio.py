from __future__ import annotations

# python imports:
import logging
import ssl
from typing import Optional as Opt, Type

# email_submit imports:
from event_handling import close_if_oserror
from mime_message import Message
from smtp_auth import AuthMechanism
import smtp_async
import smtp_proto as proto
from transport_trio import TrioTransport as Transport

logger = logging.getLogger ( __name__ )


class Client ( smtp_async.Client ):
	@classmethod
	async def connect ( cls: Type[Client],
		hostname: str,
		port: int,
		tls: bool, # True for implicit TLS (port 465), False for plain or STARTTLS
		*,
		local_hostname: str = 'localhost',
		auth_mechanism: Opt[AuthMechanism] = None,
		ssl_context: Opt[ssl.SSLContext] = None,
	) -> Client:
		log = logger.getChild ( 'Client.connect' )
		with close_if_oserror():
			transport = await Transport.connect ( hostname, port, tls, ssl_context )
		self = cls ( transport, tls, hostname, local_hostname, auth_mechanism = auth_mechanism )
		try:
			await self.greeting()
		except Exception as e:
			log.debug ( f'greeting from {hostname}:{port} failed: {e!r}' )
			await self.close()
			raise
		return self


async def send_mail ( hostname: str,
	port: int,
	message: Message,
	*,
	tls: bool = False,
	local_hostname: str = 'localhost',
	auth_mechanism: Opt[AuthMechanism] = None,
	ssl_context: Opt[ssl.SSLContext] = None,
) -> proto.SuccessResponse:
	cli = await Client.connect ( hostname, port, tls,
		local_hostname = local_hostname,
		auth_mechanism = auth_mechanism,
		ssl_context = ssl_context,
	)
	try:
		await cli.start_session()
		r = await cli.send_single ( message )
		await cli.quit()
		return r
	finally:
		await cli.close()
