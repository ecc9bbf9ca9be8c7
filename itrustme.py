# python imports:
import ssl
import trustme # pip install trustme


class ServerOnly:
	'''
	A throwaway CA plus a certificate for one server name, for TLS tests:
	server_context() serves the certificate, client_context() trusts the CA.
	'''
	def __init__ ( self, *,
		server_hostname: str, # ex: 'smtp.example.org'
	) -> None:
		self.server_hostname = server_hostname
		self.ca = trustme.CA()
		self.server_cert = self.ca.issue_cert ( self.server_hostname )

	def server_context ( self ) -> ssl.SSLContext:
		ctx = ssl.create_default_context ( ssl.Purpose.CLIENT_AUTH )
		self.server_cert.configure_cert ( ctx )
		ctx.verify_mode = ssl.CERT_NONE
		return ctx

	def client_context ( self ) -> ssl.SSLContext:
		ctx = ssl.create_default_context ( ssl.Purpose.SERVER_AUTH )
		self.ca.configure_trust ( ctx )
		return ctx
