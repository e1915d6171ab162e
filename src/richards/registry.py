import threading
import typing

from richards.errors import ValidationError

__all__ = ["Registry"]

F = typing.TypeVar("F", bound=typing.Callable[..., typing.Any])


class Registry(typing.Generic[F]):
    """
    Thread-safe name -> constructor/function registry.

    Usage:
    ```python
    eos_models = Registry("EOS model")

    @eos_models.register("constant")
    class ConstantEOS(EOS): ...

    eos = eos_models.get("constant")(options)
    ```
    """

    def __init__(self, kind: str) -> None:
        self.kind = kind
        self._entries: typing.Dict[str, F] = {}
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind!r}, entries={self.names()})"

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._entries

    @typing.overload
    def register(self, name: F) -> F: ...

    @typing.overload
    def register(
        self, name: typing.Optional[str] = None, override: bool = False
    ) -> typing.Callable[[F], F]: ...

    def register(
        self,
        name: typing.Union[str, F, None] = None,
        override: bool = False,
    ) -> typing.Union[F, typing.Callable[[F], F]]:
        """
        Register a callable, as a decorator or directly.

        :param name: Name to register under. Uses `__name__` if not provided.
        :param override: If True, allows replacing an existing registration.
        :return: The registered callable, unmodified, or a decorator.
        """
        if callable(name):
            return self.register()(name)

        def decorator(func: F) -> F:
            key = name or getattr(func, "__name__", None)
            if not key:
                raise ValidationError(
                    f"{self.kind} must have a `__name__` attribute or a name must be provided."
                )
            with self._lock:
                if not override and key in self._entries:
                    raise ValidationError(
                        f"{self.kind} {key!r} is already registered. "
                        f"Use `override=True` to replace it."
                    )
                self._entries[key] = func
            return func

        return decorator

    def get(self, name: str) -> F:
        """
        Get a registered callable by name.

        :raises ValidationError: If nothing is registered under `name`.
        """
        with self._lock:
            if name not in self._entries:
                raise ValidationError(
                    f"Unknown {self.kind}: {name!r}. "
                    f"Available: {list(self._entries.keys())}"
                )
            return self._entries[name]

    def names(self) -> typing.List[str]:
        with self._lock:
            return list(self._entries.keys())
