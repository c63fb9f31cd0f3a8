import base64

import aiohttp
import pytest

from steward._cogs.clients.auth import APIContext, decode_to_pem
from steward._cogs.structs.credentials import ConnectionInfo


@pytest.mark.parametrize('info, expected', [
    (ConnectionInfo(server='http://h'), None),
    (ConnectionInfo(server='http://h', token='tkn'), 'Bearer tkn'),
    (ConnectionInfo(server='http://h', scheme='Digest', token='tkn'), 'Digest tkn'),
    (ConnectionInfo(server='http://h', scheme='Custom'), 'Custom'),
])
async def test_authorization_headers(info, expected):
    context = APIContext(info)
    try:
        assert context.session.headers.get('Authorization') == expected
        assert context.session.headers['User-Agent'].startswith('steward/')
        assert context.server == 'http://h'
    finally:
        await context.close()


async def test_basic_auth():
    context = APIContext(ConnectionInfo(server='http://h', username='u', password='p'))
    try:
        assert context.session.auth == aiohttp.BasicAuth('u', 'p')
    finally:
        await context.close()


async def test_default_namespace():
    context = APIContext(ConnectionInfo(server='http://h', default_namespace='ns1'))
    try:
        assert context.default_namespace == 'ns1'
        assert context.discovered == {}
    finally:
        await context.close()


@pytest.mark.parametrize('data', [
    '-----BEGIN CERTIFICATE-----\nxyz\n',
    b'-----BEGIN CERTIFICATE-----\nxyz\n',
    base64.b64encode(b'-----BEGIN CERTIFICATE-----\nxyz\n'),
    base64.b64encode(b'-----BEGIN CERTIFICATE-----\nxyz\n').decode('ascii'),
])
def test_pem_decoding(data):
    assert decode_to_pem(data) == '-----BEGIN CERTIFICATE-----\nxyz\n'
