SEARCHING = "searching"
RESULTS = "results"
DETAIL = "detail"
REJECTION = "rejection"
CHAT = "chat"
CONGRATULATIONS = "congratulations"
EXITED = "exited"

STEPS = (SEARCHING, RESULTS, DETAIL, REJECTION, CHAT, CONGRATULATIONS, EXITED)

_TRANSITIONS: dict[tuple[str, str], str] = {
    (SEARCHING, "matches_found"): RESULTS,
    (SEARCHING, "timeout"): EXITED,
    (RESULTS, "select"): DETAIL,
    (RESULTS, "reject"): REJECTION,
    (RESULTS, "search_again"): SEARCHING,
    (DETAIL, "back_to_results"): RESULTS,
    (DETAIL, "detail_timeout"): RESULTS,
    (DETAIL, "connect"): CHAT,
    (DETAIL, "reject"): REJECTION,
    (CHAT, "end_chat"): REJECTION,
    (CHAT, "chat_timeout"): REJECTION,
    (CHAT, "promoted"): CONGRATULATIONS,
    (CHAT, "partner_left"): EXITED,
    (REJECTION, "submit"): EXITED,
    (REJECTION, "skip"): EXITED,
    (CONGRATULATIONS, "done"): EXITED,
}


def transition_step(current: str, action: str) -> str:
    if current == EXITED:
        return EXITED

    if action == "back":
        return EXITED

    if action == "restart":
        return SEARCHING

    return _TRANSITIONS.get((current, action), current)


def can_transition(current: str, action: str) -> bool:
    if current == EXITED:
        return False
    return action in {"back", "restart"} or (current, action) in _TRANSITIONS
