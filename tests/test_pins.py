from cdplayer.model import ContainerStatus, DockerContainer
from cdplayer.pins import MAX_PINS, PinSet


def make_container(cid, status=ContainerStatus.RUNNING, name=None):
    return DockerContainer(id=cid, short_id=cid[:12], name=name or f"name-{cid}",
                           image="img", status=status)


def running(n, prefix="r"):
    return [make_container(f"{prefix}{i}") for i in range(n)]


class TestPin:
    def test_pin_rejects_duplicates(self):
        pins = PinSet()
        assert pins.pin("a") is True
        assert pins.pin("a") is False
        assert pins.pinned == ["a"]

    def test_pin_clears_manual_unpin(self):
        pins = PinSet(unpinned=["a"])
        pins.pin("a")
        assert "a" not in pins.unpinned

    def test_unpin_records_manual_unpin(self):
        pins = PinSet(pinned=["a", "b"])
        pins.unpin("a")
        assert pins.pinned == ["b"]
        assert pins.unpinned == {"a"}

    def test_eleventh_pin_evicts_lowest_tier(self):
        containers = running(8) + [
            make_container("p0", ContainerStatus.PAUSED),
            make_container("x0", ContainerStatus.EXITED),
        ]
        pins = PinSet(pinned=[c.id for c in containers])
        assert len(pins.pinned) == MAX_PINS

        pins.pin("new", containers)

        assert len(pins.pinned) == MAX_PINS
        assert "x0" not in pins.pinned
        assert "p0" in pins.pinned
        assert pins.pinned[-1] == "new"

    def test_eviction_tier_order(self):
        containers = [
            make_container("run", ContainerStatus.RUNNING),
            make_container("pau", ContainerStatus.PAUSED),
            make_container("oth", ContainerStatus.OTHER),
            make_container("cre", ContainerStatus.CREATED),
        ]
        pins = PinSet(pinned=["run", "pau", "oth", "cre"])
        evicted = [pins.evict(containers) for _ in range(4)]
        assert evicted == ["cre", "oth", "pau", "run"]

    def test_eviction_oldest_within_tier(self):
        containers = [make_container("old", ContainerStatus.EXITED),
                      make_container("young", ContainerStatus.EXITED)]
        pins = PinSet(pinned=["old", "young"])
        assert pins.evict(containers) == "old"

    def test_eviction_falls_back_to_oldest_orphan(self):
        pins = PinSet(pinned=["gone1", "gone2"])
        assert pins.evict([]) == "gone1"
        assert pins.pinned == ["gone2"]

    def test_eviction_resolves_pins_by_name(self):
        containers = [make_container("id1", ContainerStatus.EXITED, name="db"),
                      make_container("id2", ContainerStatus.RUNNING, name="web")]
        pins = PinSet(pinned=["web", "db"])
        assert pins.evict(containers) == "db"


class TestAutoPin:
    def test_pins_running_containers(self):
        containers = running(2) + [make_container("x", ContainerStatus.EXITED)]
        pins = PinSet()
        assert pins.auto_pin(containers) is True
        assert pins.pinned == ["r0", "r1"]

    def test_idempotent(self):
        containers = running(3)
        pins = PinSet()
        pins.auto_pin(containers)
        first = list(pins.pinned)
        assert pins.auto_pin(containers) is False
        assert pins.pinned == first

    def test_idempotent_when_more_running_than_capacity(self):
        containers = running(MAX_PINS + 3)
        pins = PinSet()
        pins.auto_pin(containers)
        first = list(pins.pinned)
        assert len(first) == MAX_PINS

        assert pins.auto_pin(containers) is False
        assert pins.pinned == first

    def test_makes_room_by_dropping_stopped_pin(self):
        containers = running(MAX_PINS - 1) + [
            make_container("x0", ContainerStatus.EXITED),
            make_container("new"),
        ]
        pins = PinSet(pinned=[c.id for c in containers[:MAX_PINS]])
        assert pins.auto_pin(containers) is True
        assert "x0" not in pins.pinned
        assert "new" in pins.pinned
        assert len(pins.pinned) == MAX_PINS

    def test_name_pin_covers_recreated_container(self):
        containers = [make_container("fresh-id", name="web")]
        pins = PinSet(pinned=["web"])
        assert pins.auto_pin(containers) is False
        assert pins.pinned == ["web"]

    def test_manual_unpin_persists_while_running(self):
        container = make_container("a")
        pins = PinSet()
        pins.auto_pin([container])
        pins.unpin("a")

        pins.auto_pin([container])
        pins.auto_pin([container])
        assert not pins.is_pinned("a")
        assert "a" in pins.unpinned

    def test_manual_unpin_forgotten_once_stopped(self):
        pins = PinSet()
        pins.auto_pin([make_container("a")])
        pins.unpin("a")

        assert pins.auto_pin([make_container("a", ContainerStatus.EXITED)]) is True
        assert pins.unpinned == set()

        pins.auto_pin([make_container("a")])
        assert pins.is_pinned("a")


def test_pinned_containers_sorted_and_deduplicated():
    containers = [make_container("1", name="Zeta"), make_container("2", name="alpha")]
    pins = PinSet(pinned=["1", "Zeta", "2", "missing"])
    resolved = pins.pinned_containers(containers)
    assert [c.name for c in resolved] == ["alpha", "Zeta"]


def test_unpinned_running_count():
    containers = running(3) + [make_container("x", ContainerStatus.EXITED)]
    pins = PinSet(pinned=["r0"])
    assert pins.unpinned_running_count(containers) == 2
