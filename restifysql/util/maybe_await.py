import inspect


async def maybe_await(value):
    """ Await the value if it's awaitable: lets hooks be either sync or async functions """
    if inspect.isawaitable(value):
        return await value
    return value
