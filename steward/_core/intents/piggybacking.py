"""
Rudimentary login to the cluster: from a kubeconfig or a service account.

Steward is not a client library, and avoids bringing too much logic
for proper authentication, especially all the complex auth-providers.
Only the raw data (tokens, certificates, basic credentials) are taken
as they are stored in the files.

.. seealso::
    :mod:`credentials`.
"""
import os
from typing import Any

import yaml

from steward._cogs.helpers import typedefs
from steward._cogs.structs import credentials

# As per https://kubernetes.io/docs/tasks/run-application/access-api-from-pod/
SERVICE_ACCOUNT_TOKEN_PATH = '/var/run/secrets/kubernetes.io/serviceaccount/token'
SERVICE_ACCOUNT_NS_PATH = '/var/run/secrets/kubernetes.io/serviceaccount/namespace'
SERVICE_ACCOUNT_CA_PATH = '/var/run/secrets/kubernetes.io/serviceaccount/ca.crt'


def login(
        *,
        logger: typedefs.Logger,
) -> credentials.ConnectionInfo:
    """
    Login with the first available method: in-cluster first, then kubeconfig.
    """
    info = login_with_service_account()
    if info is not None:
        logger.debug("Client is configured in cluster with service account.")
        return info

    info = login_with_kubeconfig()
    if info is not None:
        logger.debug("Client is configured via kubeconfig file.")
        return info

    raise credentials.LoginError("Cannot authenticate neither in-cluster, nor via kubeconfig.")


def has_service_account() -> bool:
    return os.path.exists(SERVICE_ACCOUNT_TOKEN_PATH)


def login_with_service_account(**_: Any) -> credentials.ConnectionInfo | None:
    """
    A minimalistic login that can get raw data from a service account.
    """
    if os.path.exists(SERVICE_ACCOUNT_TOKEN_PATH):
        with open(SERVICE_ACCOUNT_TOKEN_PATH, encoding='utf-8') as f:
            token = f.read().strip()

        namespace: str | None = None
        if os.path.exists(SERVICE_ACCOUNT_NS_PATH):
            with open(SERVICE_ACCOUNT_NS_PATH, encoding='utf-8') as f:
                namespace = f.read().strip()

        return credentials.ConnectionInfo(
            server='https://kubernetes.default.svc',
            ca_path=SERVICE_ACCOUNT_CA_PATH if os.path.exists(SERVICE_ACCOUNT_CA_PATH) else None,
            token=token or None,
            default_namespace=namespace or None,
        )
    else:
        return None


def has_kubeconfig() -> bool:
    env_var_set = bool(os.environ.get('KUBECONFIG'))
    file_exists = os.path.exists(os.path.expanduser('~/.kube/config'))
    return env_var_set or file_exists


def login_with_kubeconfig(**_: Any) -> credentials.ConnectionInfo | None:
    """
    A minimalistic login that can get raw data from a kubeconfig file.

    Authentication capabilities are limited to keep the code short & simple.
    No parsing or sophisticated multi-step token retrieval is performed.
    """

    # As per https://kubernetes.io/docs/concepts/configuration/organize-cluster-access-kubeconfig/
    kubeconfig = os.environ.get('KUBECONFIG')
    if not kubeconfig and os.path.exists(os.path.expanduser('~/.kube/config')):
        kubeconfig = '~/.kube/config'
    if not kubeconfig:
        return None

    paths = [path.strip() for path in kubeconfig.split(os.pathsep)]
    paths = [os.path.expanduser(path) for path in paths if path]

    # As prescribed: if the file is absent or non-deserialisable, then fail. The first value wins.
    current_context: str | None = None
    contexts: dict[Any, Any] = {}
    clusters: dict[Any, Any] = {}
    users: dict[Any, Any] = {}
    for path in paths:

        with open(path, encoding='utf-8') as f:
            config = yaml.safe_load(f.read()) or {}

        if current_context is None:
            current_context = config.get('current-context')
        for item in config.get('contexts', []):
            if item['name'] not in contexts:
                contexts[item['name']] = item.get('context') or {}
        for item in config.get('clusters', []):
            if item['name'] not in clusters:
                clusters[item['name']] = item.get('cluster') or {}
        for item in config.get('users', []):
            if item['name'] not in users:
                users[item['name']] = item.get('user') or {}

    # Once fully parsed, use the current context only.
    if current_context is None:
        raise credentials.LoginError('Current context is not set in kubeconfigs.')
    context = contexts[current_context]
    cluster = clusters[context['cluster']]
    user = users[context['user']]

    provider_token = user.get('auth-provider', {}).get('config', {}).get('access-token')

    # Map the retrieved fields into the credentials object.
    return credentials.ConnectionInfo(
        server=cluster.get('server'),
        ca_path=cluster.get('certificate-authority'),
        ca_data=cluster.get('certificate-authority-data'),
        insecure=cluster.get('insecure-skip-tls-verify'),
        certificate_path=user.get('client-certificate'),
        certificate_data=user.get('client-certificate-data'),
        private_key_path=user.get('client-key'),
        private_key_data=user.get('client-key-data'),
        username=user.get('username'),
        password=user.get('password'),
        token=user.get('token') or provider_token,
        default_namespace=context.get('namespace'),
    )
