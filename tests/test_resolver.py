from pathlib import Path

import pytest

from groupguard.identity.resolver import LidResolver, reverse_mapping_path


class _Mapping:
    def __init__(self, value: str | None = None, error: Exception | None = None) -> None:
        self.value = value
        self.error = error
        self.calls: list[str] = []

    async def resolve_lid(self, lid_user: str) -> str | None:
        self.calls.append(lid_user)
        if self.error is not None:
            raise self.error
        return self.value


async def test_live_lookup_wins() -> None:
    mapping = _Mapping(value="972527332312@s.whatsapp.net")
    resolver = LidResolver(mapping=mapping)
    assert await resolver.resolve("77709346664559@lid") == "972527332312"
    assert mapping.calls == ["77709346664559"]


async def test_falls_back_to_reverse_cache_when_live_lookup_raises(tmp_path: Path) -> None:
    reverse_mapping_path(tmp_path, "77709346664559").write_text('"972500000000"\n', encoding="utf-8")
    resolver = LidResolver(mapping=_Mapping(error=RuntimeError("bridge down")), cache_dir=tmp_path)
    assert await resolver.resolve("77709346664559@lid") == "972500000000"


async def test_miss_is_not_fatal(tmp_path: Path) -> None:
    resolver = LidResolver(mapping=_Mapping(value=None), cache_dir=tmp_path)
    assert await resolver.resolve("77709346664559@lid") is None


async def test_non_lid_is_not_resolved() -> None:
    mapping = _Mapping(value="1")
    resolver = LidResolver(mapping=mapping)
    assert await resolver.resolve("972500000000@s.whatsapp.net") is None
    assert mapping.calls == []


async def test_resolve_target_normalizes_and_resolves(tmp_path: Path) -> None:
    reverse_mapping_path(tmp_path, "77709346664559").write_text("972527332312", encoding="utf-8")
    resolver = LidResolver(cache_dir=tmp_path)

    target = await resolver.resolve_target(" 77709346664559:2@lid ")
    assert target.normalized_key == "77709346664559@lid"
    assert target.resolved_phone == "972527332312"
    assert target.checkpoint_key == "77709346664559@lid"

    phone = await resolver.resolve_target("+972 52 733 2312")
    assert phone.normalized_key == "972527332312@c.us"
    assert phone.checkpoint_key == "972527332312@s.whatsapp.net"
    assert phone.resolved_phone is None


async def test_resolve_target_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        await LidResolver().resolve_target("   ")
