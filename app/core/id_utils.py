import shortuuid


def generate_shortuuid() -> str:
    return shortuuid.uuid()


def generate_recovery_token(length: int = 24) -> str:
    return shortuuid.ShortUUID().random(length=length)
