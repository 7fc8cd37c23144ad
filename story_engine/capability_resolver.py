from story_engine.auth import Role


def resolve_roles(actor_id: str) -> frozenset[Role]:
    """
    Map the actor presented by the transport to its roles.
    Temporary hardcoded logic; authentication happens upstream.
    """

    if actor_id == "ADMIN":
        return frozenset({Role.MEMBER, Role.ADMIN})

    if actor_id == "MEMBER":
        return frozenset({Role.MEMBER})

    return frozenset()
