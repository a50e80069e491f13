import pytest

from convo_agent.domain.memory import MemoryFork, TurnState, parse_memory_path
from convo_agent.domain.memory.memory_fork import ScopedMemory
from convo_agent.domain.memory.storage import MemoryStorage
from convo_agent.domain.models.errors import ConvoAgentError, InvalidMemoryPathError


@pytest.mark.parametrize("path, expected", [
    ("input", ("temp", ["input"])),
    ("conversation.history", ("conversation", ["history"])),
    ("user.profile.name", ("user", ["profile", "name"])),
])
def test_parse_memory_path(path, expected):
    assert parse_memory_path(path) == expected


@pytest.mark.parametrize("path", ["", "conversation..history", "session.history", ".temp"])
def test_invalid_memory_paths(path):
    with pytest.raises(InvalidMemoryPathError):
        parse_memory_path(path)


def test_fork_writes_are_invisible_until_merged():
    backing = ScopedMemory()
    backing.set_value("conversation.count", 1)
    fork = MemoryFork(backing)

    fork.set_value("conversation.count", 2)
    fork.set_value("user.name", "Ada")

    assert fork.get_value("conversation.count") == 2
    assert backing.get_value("conversation.count") == 1
    assert not backing.has_value("user.name")

    fork.merge_changes()

    assert backing.get_value("conversation.count") == 2
    assert backing.get_value("user.name") == "Ada"


def test_fork_reads_are_private_copies():
    backing = ScopedMemory()
    backing.set_value("conversation.history", ["hi"])
    fork = MemoryFork(backing)

    fork.get_value("conversation.history").append("leaked?")

    assert backing.get_value("conversation.history") == ["hi"]
    assert fork.get_value("conversation.history") == ["hi"]


def test_fork_deletes_and_nested_writes():
    backing = ScopedMemory()
    backing.set_value("conversation.variables", {"a": "1", "b": "2"})
    backing.set_value("conversation.stale", True)
    fork = MemoryFork(backing)

    fork.delete_value("conversation.stale")
    fork.delete_value("conversation.variables.a")
    fork.set_value("conversation.variables.c", "3")
    fork.delete_value("conversation.variables.missing")

    assert not fork.has_value("conversation.stale")
    assert fork.get_value("conversation.variables") == {"b": "2", "c": "3"}
    assert backing.has_value("conversation.stale")
    assert fork.changed_paths == ["conversation.stale", "conversation.variables"]

    fork.merge_changes()

    assert not backing.has_value("conversation.stale")
    assert backing.get_value("conversation.variables") == {"b": "2", "c": "3"}


def test_nested_write_through_scalar_fails():
    fork = MemoryFork(ScopedMemory())
    fork.set_value("temp.name", "Ada")

    with pytest.raises(InvalidMemoryPathError):
        fork.set_value("temp.name.first", "A")


def test_fork_merges_only_once():
    fork = MemoryFork(ScopedMemory())
    fork.merge_changes()

    with pytest.raises(ConvoAgentError):
        fork.merge_changes()


def test_merge_into_explicit_target():
    backing = ScopedMemory()
    target = ScopedMemory()
    fork = MemoryFork(backing)
    fork.set_value("user.tz", "UTC")

    fork.merge_changes(target)

    assert target.get_value("user.tz") == "UTC"
    assert not backing.has_value("user.tz")


async def test_turn_state_round_trip(context, storage):
    state = await TurnState.load(context, storage)
    assert state.get_value("temp.input") == "hello there"
    assert state.get_value("temp.input_files") == []

    state.set_value("conversation.topic", "tea")
    state.set_value("user.tz", "UTC")
    state.set_value("temp.scratch", "gone")
    await state.save()

    assert storage.items["conversation/conversation-1"] == {"topic": "tea"}
    assert storage.items["user/user-1"] == {"tz": "UTC"}

    reloaded = await TurnState.load(context, storage)
    assert reloaded.get_value("conversation.topic") == "tea"
    assert not reloaded.has_value("temp.scratch")

    await reloaded.delete_conversation_state()
    assert "conversation/conversation-1" not in storage.items
    assert reloaded.conversation == {}


async def test_memory_storage_copies_values(storage):
    value = {"items": [1]}
    await storage.write({"key": value})
    value["items"].append(2)

    read = await storage.read(["key", "absent"])
    assert read == {"key": {"items": [1]}}

    read["key"]["items"].append(3)
    assert storage.items["key"] == {"items": [1]}
