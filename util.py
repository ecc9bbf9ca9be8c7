import base64
from typing import Optional as Opt, Tuple, Union

BYTES = Union[bytes,bytearray,memoryview]
bytes_types = ( bytes, bytearray, memoryview )

def b2s ( b: BYTES, encoding: str = 'us-ascii', errors: str = 'strict' ) -> str:
	return bytes ( b ).decode ( encoding, errors )

def s2b ( s: str, encoding: str = 'us-ascii', errors: str = 'strict' ) -> bytes:
	return s.encode ( encoding, errors )

def b64_encode ( b: Opt[BYTES] ) -> str:
	return b2s ( base64.b64encode ( bytes ( b or b'' ) ) )

def b64_decode ( s: str ) -> bytes:
	return base64.b64decode ( s2b ( s ), validate = True )

def is_ascii ( s: str ) -> bool:
	return all ( ord ( c ) < 128 for c in s )

def split_address ( address: str ) -> Tuple[str,str]:
	# 'user@domain' -> ( 'user', 'domain' ), no '@' -> ( address, '' )
	user, sep, domain = address.partition ( '@' )
	if not sep:
		return address, ''
	return user, domain
