# python imports:
import packaging.version # pip install packaging

__version__ = packaging.version.parse ( '0.1.0' )

'''
NOTE: the sessions aren't imported anywhere central, pick the one that
matches your I/O and import it directly:

import smtp_socket

from smtp_trio import Client
'''
