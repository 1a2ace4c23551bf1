from dataclasses import dataclass


@dataclass(frozen=True)
class ReconcileResult:
    requeue: bool = False
    requeue_after: float | None = None

    @classmethod
    def done(cls) -> "ReconcileResult":
        return cls()

    @classmethod
    def again(cls) -> "ReconcileResult":
        return cls(requeue=True)

    @classmethod
    def after(cls, seconds: float) -> "ReconcileResult":
        return cls(requeue=True, requeue_after=seconds)


@dataclass(frozen=True)
class ReconcileRequest:
    kind: str
    namespace: str
    name: str

    @property
    def group(self) -> str:
        return f"{self.kind}/{self.namespace}/{self.name}"
