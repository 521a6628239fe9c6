from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class ValidationResult:
    ok: bool
    code: str | None = None
    reason: str | None = None
    suggestion: str | None = None
    node_id: str | None = None
    edge_id: str | None = None

    def __bool__(self) -> bool:
        return self.ok

    @classmethod
    def accept(cls) -> ValidationResult:
        return cls(ok=True)

    @classmethod
    def reject(
        cls,
        code: str,
        reason: str,
        *,
        suggestion: str | None = None,
        node_id: str | None = None,
        edge_id: str | None = None,
    ) -> ValidationResult:
        return cls(
            ok=False,
            code=code,
            reason=reason,
            suggestion=suggestion,
            node_id=node_id,
            edge_id=edge_id,
        )

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"valid": self.ok}
        if self.code:
            payload["code"] = self.code
        if self.reason:
            payload["reason"] = self.reason
        if self.suggestion:
            payload["suggestion"] = self.suggestion
        return payload


def render_rejection(result: ValidationResult) -> str:
    location_bits: list[str] = []
    if result.node_id:
        location_bits.append(f"node={result.node_id}")
    if result.edge_id:
        location_bits.append(f"edge={result.edge_id}")

    location = f" ({', '.join(location_bits)})" if location_bits else ""
    suggestion = f" Suggestion: {result.suggestion}" if result.suggestion else ""
    return f"{result.code or 'INVALID'}: {result.reason or 'Rejected'}{location}.{suggestion}".rstrip()


def render_rejections(results: list[ValidationResult]) -> str:
    rejected = [item for item in results if not item.ok]
    if not rejected:
        return ""
    ordered = sorted(rejected, key=lambda item: (item.code or "", item.node_id or "", item.edge_id or ""))
    return "\n".join(f"- {render_rejection(item)}" for item in ordered)
