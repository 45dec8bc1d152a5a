from collections.abc import MutableMapping

EVENT_PARAM = "eventId"


class EventSelectionSync:
    """
    Keeps the selected event id and a query-parameter mapping in step.

    No validation: an id that matches no event just filters everything out.
    """

    def __init__(
        self, params: MutableMapping[str, str], key: str = EVENT_PARAM
    ) -> None:
        self.params = params
        self.key = key
        self._selected: str | None = params.get(key) or None

    @property
    def selected(self) -> str | None:
        return self._selected

    @selected.setter
    def selected(self, event_id: str | None) -> None:
        self._selected = event_id or None
        if self._selected is None:
            self.params.pop(self.key, None)
        else:
            self.params[self.key] = self._selected

    def sync_from_params(self) -> str | None:
        """Pick up an externally edited parameter (e.g. a bookmarked URL)."""
        self._selected = self.params.get(self.key) or None
        return self._selected

    def query(self) -> dict[str, str]:
        return {self.key: self._selected} if self._selected else {}
