import base64

def encode(b): # takes bytes, returns native string
    assert isinstance(b, bytes), (type(b), b)
    return base64.b32encode(b).lower().rstrip(b"=").decode("ascii")

# we use the rfc4648 base32 alphabet, in lowercase
BASE32_ALPHABET = 'abcdefghijklmnopqrstuvwxyz234567'

def is_base32(s):
    assert isinstance(s, str), (type(s), s)
    for c in s.lower():
        if c not in BASE32_ALPHABET:
            return False
    return True

# v3 onion services have 56-character names, the retired v2 ones had 16
ONION_NAME_LENGTHS = (56, 16)

def is_onion_hostname(hostname):
    if not hostname.endswith(".onion"):
        return False
    name = hostname[:-len(".onion")].rsplit(".", 1)[-1]
    return len(name) in ONION_NAME_LENGTHS and is_base32(name)
