# spot_tracker.py

class SpotLifecycleTracker:
    """
        Keeps track of the markers pushed to a radio panadapter.

        Markers are keyed by callsign on the wire, so a callsign seen again
        on another frequency must be removed before being added back. The
        host calls add() for every spot of a refresh cycle, then prune()
        once, which removes the markers of the previous cycle that were
        not refreshed and rotates the sets.
    """
    def __init__(self, threshold, add_marker, remove_marker):
        self.threshold      = threshold
        self._add_marker    = add_marker
        self._remove_marker = remove_marker

        # dicts are used as insertion ordered sets
        self._active        = {}
        self._previous      = {}
        self._frequencies   = {}

    @property
    def active(self):
        return set(self._active)

    @property
    def previous(self):
        return set(self._previous)

    def frequency_of(self, callsign):
        return self._frequencies.get(callsign)

    def __contains__(self, callsign):
        return callsign in self._active or callsign in self._previous

    def add(self, callsign, frequency, spot=None):
        previous_frequency = self._frequencies.get(callsign)
        if (
            previous_frequency is not None and
            abs(previous_frequency - frequency) > self.threshold
        ):
            self._remove_marker(callsign)

        self._add_marker(callsign, frequency, spot)
        self._active[callsign]      = None
        self._frequencies[callsign] = frequency

    def prune(self):
        stale_callsigns = [call for call in self._previous if call not in self._active]
        for callsign in stale_callsigns:
            self._remove_marker(callsign)
            self._frequencies.pop(callsign, None)

        self._previous  = dict(self._active)
        self._active    = {}

        return stale_callsigns

    def tracked_callsigns(self):
        tracked = dict(self._previous)
        tracked.update(self._active)
        return list(tracked)

    def reset(self):
        self._active.clear()
        self._previous.clear()
        self._frequencies.clear()
