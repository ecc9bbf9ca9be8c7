from __future__ import annotations

# python imports:
import logging
import ssl
from typing import Optional as Opt, Type

# email_submit imports:
from event_handling import close_if_oserror
from mime_message import Message
from smtp_auth import AuthMechanism
import smtp_proto as proto
import smtp_sync
from transport_socket import SocketTransport as Transport

logger = logging.getLogger ( __name__ )


class Client ( smtp_sync.Client ):
	@classmethod
	def connect ( cls: Type[Client],
		hostname: str,
		port: int,
		tls: bool, # True for implicit TLS (port 465), False for plain or STARTTLS
		*,
		local_hostname: str = 'localhost',
		auth_mechanism: Opt[AuthMechanism] = None,
		ssl_context: Opt[ssl.SSLContext] = None,
		timeout: Opt[float] = None,
	) -> Client:
		log = logger.getChild ( 'Client.connect' )
		with close_if_oserror():
			transport = Transport.connect ( hostname, port, tls, timeout, ssl_context )
		self = cls ( transport, tls, hostname, local_hostname, auth_mechanism = auth_mechanism )
		try:
			self.greeting()
		except Exception as e:
			log.debug ( f'greeting from {hostname}:{port} failed: {e!r}' )
			self.close()
			raise
		return self


def send_mail ( hostname: str,
	port: int,
	message: Message,
	*,
	tls: bool = False,
	local_hostname: str = 'localhost',
	auth_mechanism: Opt[AuthMechanism] = None,
	ssl_context: Opt[ssl.SSLContext] = None,
	timeout: Opt[float] = None,
) -> proto.SuccessResponse:
	'''
	Connect, start the session (STARTTLS and AUTH when offered), send one
	message and QUIT. The connection is closed however it ends.
	'''
	cli = Client.connect ( hostname, port, tls,
		local_hostname = local_hostname,
		auth_mechanism = auth_mechanism,
		ssl_context = ssl_context,
		timeout = timeout,
	)
	try:
		cli.start_session()
		r = cli.send_single ( message )
		cli.quit()
		return r
	finally:
		cli.close()
