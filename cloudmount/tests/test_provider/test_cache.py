from cloudmount.provider.cache import MetadataCache
from cloudmount.storage.common import EntryMetadata


def file_entry(name, size=0):
    return EntryMetadata(name=name, is_directory=False, size=size)


def dir_entry(name):
    return EntryMetadata(name=name, is_directory=True)


def test_empty_cache_unresolved():
    cache = MetadataCache()

    entry = cache.get("/foo")

    assert not entry.resolved
    assert entry.metadata is None
    assert "/foo" not in cache
    assert len(cache) == 0


def test_put_then_get_listing():
    cache = MetadataCache()
    listing = [file_entry("a.txt", 3), dir_entry("sub")]

    cache.put("/dir", listing)

    entry = cache.get("/dir")

    assert entry.resolved
    assert entry.exists
    assert entry.is_directory
    assert entry.children == listing
    assert len(cache) == 1


def test_put_copies_listing():
    cache = MetadataCache()
    listing = [file_entry("a.txt")]

    cache.put("/dir", listing)
    listing.append(file_entry("b.txt"))

    assert cache.get("/dir").children == [file_entry("a.txt")]


def test_put_replaces_listing():
    cache = MetadataCache()

    cache.put("/dir", [file_entry("a.txt")])
    cache.put("/dir", [file_entry("b.txt")])

    assert cache.get("/dir").children == [file_entry("b.txt")]


def test_listed_directory_metadata_synthesized():
    cache = MetadataCache()

    cache.put("/dir", [])

    assert cache.get("/dir").metadata == EntryMetadata(name="dir", is_directory=True)


def test_listed_directory_metadata_from_parent():
    cache = MetadataCache()
    sub = EntryMetadata(name="sub", is_directory=True, modification_time=123.0)

    cache.put("/", [sub])
    cache.put("/sub", [])

    assert cache.get("/sub").metadata == sub


def test_children_resolved_by_listing():
    cache = MetadataCache()

    cache.put("/dir", [file_entry("a.txt", 3), dir_entry("sub")])

    a = cache.get("/dir/a.txt")
    assert a.resolved and a.exists and not a.is_directory
    assert a.metadata == file_entry("a.txt", 3)
    assert a.children is None

    sub = cache.get("/dir/sub")
    assert sub.resolved and sub.exists and sub.is_directory

    missing = cache.get("/dir/missing")
    assert missing.resolved and not missing.exists
    assert missing.metadata is None

    # Only direct children are resolved
    assert not cache.get("/dir/sub/deeper").resolved


def test_paths_normalized():
    cache = MetadataCache()

    cache.put("dir/", [file_entry("a.txt")])

    assert cache.get("/dir").resolved
    assert cache.get("//dir//a.txt").exists


def test_remove_unresolves_path():
    cache = MetadataCache()

    cache.put("/dir", [file_entry("a.txt")])
    cache.remove("/dir")

    assert not cache.get("/dir").resolved
    assert not cache.get("/dir/a.txt").resolved
    assert len(cache) == 0


def test_remove_child_of_listed_directory():
    cache = MetadataCache()

    cache.put("/dir", [file_entry("a.txt"), file_entry("b.txt")])
    cache.remove("/dir/a.txt")

    # The stale listing of the parent doesn't resolve the removed path
    assert not cache.get("/dir/a.txt").resolved
    assert cache.get("/dir/b.txt").exists
    assert cache.get("/dir").resolved


def test_remove_nonexistent_path():
    cache = MetadataCache()

    cache.put("/dir", [])
    cache.remove("/dir/new")
    cache.remove("/elsewhere")

    assert not cache.get("/dir/new").resolved
    assert cache.get("/dir").resolved


def test_remove_forgets_descendant_listings():
    cache = MetadataCache()

    cache.put("/a", [dir_entry("b")])
    cache.put("/a/b", [dir_entry("c")])
    cache.put("/a/b/c", [])
    cache.put("/ab", [])

    cache.remove("/a/b")

    assert cache.get("/a").resolved
    assert not cache.get("/a/b").resolved
    assert not cache.get("/a/b/c").resolved
    assert cache.get("/ab").resolved


def test_remove_root():
    cache = MetadataCache()

    cache.put("/", [dir_entry("a")])
    cache.put("/a", [])

    cache.remove("/")

    assert len(cache) == 0
    assert not cache.get("/").resolved


def test_put_after_remove_resolves_again():
    cache = MetadataCache()

    cache.put("/dir", [file_entry("a.txt")])
    cache.remove("/dir/a.txt")
    cache.put("/dir", [file_entry("b.txt")])

    a = cache.get("/dir/a.txt")
    assert a.resolved and not a.exists

    cache.remove("/dir")
    cache.put("/dir", [])

    assert cache.get("/dir").resolved


def test_clear():
    cache = MetadataCache()

    cache.put("/dir", [file_entry("a.txt")])
    cache.remove("/dir/a.txt")
    cache.clear()

    assert len(cache) == 0
    assert not cache.get("/dir").resolved


def test_generation_changes_on_remove():
    cache = MetadataCache()

    root = cache.generation("/")
    directory = cache.generation("/dir")
    sibling = cache.generation("/other")

    cache.remove("/dir/a.txt")

    assert cache.generation("/dir") != directory
    assert cache.generation("/dir/a.txt") != directory
    assert cache.generation("/") == root
    assert cache.generation("/other") == sibling


def test_generation_changes_on_ancestor_remove():
    cache = MetadataCache()

    nested = cache.generation("/dir/sub")
    cache.remove("/dir")

    assert cache.generation("/dir/sub") != nested


def test_generation_changes_on_clear():
    cache = MetadataCache()

    before = cache.generation("/dir")
    cache.clear()

    assert cache.generation("/dir") != before
    assert cache.generation("/dir") != (0, 0)


def test_generation_unaffected_by_put():
    cache = MetadataCache()

    before = cache.generation("/dir")
    cache.put("/dir", [file_entry("a.txt")])

    assert cache.generation("/dir") == before
