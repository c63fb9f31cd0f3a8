import steward

WEBSITE = steward.GVK('example.com', 'v1', 'Website')
SECRET = steward.GVK('', 'v1', 'Secret')

router = steward.get_default_router()


@router.handle(WEBSITE).finalize('example.com/cleanup')
async def website(request: steward.Request, response: steward.Response) -> None:
    spec = request.object.get('spec', {})

    # Reading the secret through the request's client re-triggers this website on its changes.
    try:
        secret = await request.client.get(SECRET, request.namespace, spec.get('secretName', 'web'))
    except steward.APINotFoundError:
        request.logger.info("The secret is not there yet; retrying later.")
        response.retry_after(10)
        return

    response.objects(
        {
            'apiVersion': 'v1',
            'kind': 'ConfigMap',
            'metadata': {'name': request.name},
            'data': {'index.html': spec.get('content', ''), 'keys': ','.join(sorted(secret.get('data', {})))},
        },
        {
            'apiVersion': 'apps/v1',
            'kind': 'Deployment',
            'metadata': {'name': request.name},
            'spec': {
                'replicas': spec.get('replicas', 1),
                'selector': {'matchLabels': {'app': request.name}},
                'template': {
                    'metadata': {'labels': {'app': request.name}},
                    'spec': {'containers': [{'name': 'web', 'image': spec.get('image', 'nginx')}]},
                },
            },
        },
    )
