import steward

WEBSITE = steward.GVK('example.com', 'v1', 'Website')


@steward.get_default_router().handle(WEBSITE).handler
async def website(request: steward.Request, response: steward.Response) -> None:
    request.logger.info("Rendering the website.")
