import steward

WEBSITE = steward.GVK('example.com', 'v1', 'Website')


async def website(request: steward.Request, response: steward.Response) -> None:
    response.objects({
        'apiVersion': 'v1',
        'kind': 'ConfigMap',
        'metadata': {'name': request.name, 'namespace': request.namespace},
        'data': {'index.html': request.object['spec']['content']},
    })


steward.get_default_router().handle(WEBSITE).handler(website)
