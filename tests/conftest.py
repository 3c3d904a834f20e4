import pytest

from keepsake.modules.capsules.notifications import LocalNotificationCenter
from keepsake.modules.capsules.service import CapsuleScheduler
from keepsake.modules.groups.service import GroupLifecycleManager
from keepsake.modules.memories.service import MemoryService
from tests.fakes import InMemoryGroupStore, InMemoryMemoryStore, MutableClock


@pytest.fixture
def group_store():
    return InMemoryGroupStore()


@pytest.fixture
def manager(group_store):
    return GroupLifecycleManager(group_store, timeout=1.0)


@pytest.fixture
def clock():
    return MutableClock()


@pytest.fixture
def memory_store(group_store):
    return InMemoryMemoryStore(links=group_store.memory_links)


@pytest.fixture
def notifications():
    return LocalNotificationCenter()


@pytest.fixture
def scheduler(memory_store, notifications, clock):
    return CapsuleScheduler(memory_store, notifications, clock=clock, timeout=1.0, attachment_wait=1.0)


@pytest.fixture
def memory_service(scheduler, manager):
    return MemoryService(scheduler, manager.membership, timeout=1.0)
