from collections import Counter

from models import utcnow


SEVERITIES = ("info", "warning", "error")


class AnalysisReport:
    """Informe estructurado de análisis/validación de un manifest."""

    def __init__(self):
        self.issues = []
        self.unmapped = {}
        self.s3_states = {}
        self.track_count_mismatches = []
        self.legacy_tracks = []
        self.quarantined = []
        self.events = {}
        self.counters = Counter()
        self.files_by_type = Counter()
        self.files_by_category = Counter()

    def add_issue(self, severity, category, message, event_code=None, details=None):
        if severity not in SEVERITIES:
            severity = "warning"
        issue = {
            "severity": severity,
            "category": category,
            "message": message,
            "eventCode": event_code,
        }
        if details:
            issue["details"] = details
        self.issues.append(issue)
        return issue

    def add_unmapped(self, kind, value, event_code=None):
        bucket = self.unmapped.setdefault(kind, {})
        entry = bucket.setdefault(value, {"count": 0, "events": []})
        entry["count"] += 1
        if event_code and event_code not in entry["events"]:
            entry["events"].append(event_code)
        self.add_issue(
            "warning", "mapping",
            f"No reference match for {kind} '{value}'",
            event_code=event_code
        )

    def add_track_count_mismatch(self, event_code, audio_set, expected, found):
        self.track_count_mismatches.append({
            "eventCode": event_code,
            "set": audio_set,
            "expected": expected,
            "found": found,
        })
        self.add_issue(
            "warning", "track_count",
            f"{audio_set}: expected {expected} tracks, found {found}",
            event_code=event_code
        )

    def add_legacy_tracks(self, event_code, tracks, duplicates):
        if not tracks and not duplicates:
            return
        self.legacy_tracks.append({
            "eventCode": event_code,
            "legacy": list(tracks),
            "duplicates": list(duplicates),
        })

    def count(self, name, value=1):
        self.counters[name] += value

    def issues_by(self, field):
        return dict(Counter(issue[field] for issue in self.issues))

    @property
    def has_errors(self):
        return any(issue["severity"] == "error" for issue in self.issues)

    def to_dict(self):
        return {
            "generatedAt": utcnow().isoformat(),
            "summary": dict(self.counters),
            "filesByType": dict(self.files_by_type),
            "filesByCategory": dict(self.files_by_category),
            "issueCounts": {
                "bySeverity": self.issues_by("severity"),
                "byCategory": self.issues_by("category"),
            },
            "issues": list(self.issues),
            "unmapped": self.unmapped,
            "s3States": dict(self.s3_states),
            "trackCountMismatches": list(self.track_count_mismatches),
            "legacyTracks": list(self.legacy_tracks),
            "quarantined": list(self.quarantined),
            "events": dict(self.events),
        }

    def merge(self, other):
        """Incorpora el informe parcial de un evento."""
        self.issues.extend(other.issues)
        for kind, values in other.unmapped.items():
            bucket = self.unmapped.setdefault(kind, {})
            for value, entry in values.items():
                target = bucket.setdefault(value, {"count": 0, "events": []})
                target["count"] += entry["count"]
                for code in entry["events"]:
                    if code not in target["events"]:
                        target["events"].append(code)
        self.s3_states.update(other.s3_states)
        self.track_count_mismatches.extend(other.track_count_mismatches)
        self.legacy_tracks.extend(other.legacy_tracks)
        self.events.update(other.events)
        self.counters.update(other.counters)
        self.files_by_type.update(other.files_by_type)
        self.files_by_category.update(other.files_by_category)
        return self
