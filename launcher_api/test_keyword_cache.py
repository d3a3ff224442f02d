import os
import threading

import pytest

from quicklaunch.errors import KeywordStoreError
from quicklaunch.keyword_cache import KeywordCache, format_keywords, group_by_target, parse_keywords


@pytest.fixture
def store(tmp_path):
    return tmp_path / "keywords.txt"


@pytest.fixture
def exe(tmp_path):
    path = tmp_path / "Games" / "Halo" / "halo.exe"
    path.parent.mkdir(parents=True)
    path.write_text("")
    return str(path)


class TestParseKeywords:
    def test_aliases_share_target(self):
        mapping = parse_keywords("yt,YouTube=https://youtube.com/results?search_query={}\n")
        assert mapping == {
            "yt": "https://youtube.com/results?search_query={}",
            "youtube": "https://youtube.com/results?search_query={}",
        }

    def test_skips_blank_and_malformed_lines(self):
        text = "\n   \nno equals sign here\nsteam=C:\\Games\\Steam\\steam.exe\n"
        assert parse_keywords(text) == {"steam": "C:\\Games\\Steam\\steam.exe"}

    def test_aliases_are_trimmed_and_case_folded(self):
        assert parse_keywords("  Steam , STEAMY ,=x") == {"steam": "x", "steamy": "x"}

    def test_later_lines_win(self):
        text = "halo=C:\\old\\halo.exe\nhalo,mcc=C:\\new\\mcc.exe\n"
        mapping = parse_keywords(text)
        assert mapping["halo"] == "C:\\new\\mcc.exe"
        assert mapping["mcc"] == "C:\\new\\mcc.exe"

    def test_target_may_contain_equals(self):
        mapping = parse_keywords("g=https://www.google.com/search?q={}")
        assert mapping["g"] == "https://www.google.com/search?q={}"


class TestGrouping:
    def test_one_line_per_target_with_sorted_aliases(self):
        records = group_by_target({"b": "t1", "a": "t1", "c": "t2"})
        assert format_keywords(records) == "a,b=t1\nc=t2\n"

    def test_round_trip_keeps_pairs(self):
        text = "zelda,botw=https://zelda.fandom.com/wiki/{}\nsteam=C:\\Steam\\steam.exe\nsteam2=C:\\Steam\\steam.exe\n"
        mapping = parse_keywords(text)
        again = parse_keywords(format_keywords(group_by_target(mapping)))
        assert again == mapping


class TestLoad:
    def test_missing_store_warns_and_is_empty(self, store):
        cache = KeywordCache(store)
        warning = cache.load()
        assert warning is not None
        assert "not found" in warning
        assert len(cache) == 0

    def test_empty_store_warns(self, store):
        store.write_text("", encoding="utf-8")
        cache = KeywordCache(store)
        assert cache.load() is not None
        assert len(cache) == 0

    def test_load_populates(self, store):
        store.write_text("steam=C:\\Games\\Steam\\steam.exe\n", encoding="utf-8")
        cache = KeywordCache(store)
        assert cache.load() is None
        assert cache.lookup("STEAM") == "C:\\Games\\Steam\\steam.exe"
        assert cache.lookup("epic") is None


class TestMerge:
    def test_merge_inserts(self, store, exe):
        cache = KeywordCache(store)
        assert cache.merge("Halo", exe) is True
        assert cache.lookup("halo") == exe

    def test_merge_is_idempotent(self, store, exe):
        cache = KeywordCache(store)
        cache.merge("halo", exe)
        assert cache.merge("halo", exe) is False
        assert len(cache.records()) == 1
        assert cache.records()[0].aliases == ["halo"]

    def test_merge_rejects_alias_with_space(self, store, exe):
        cache = KeywordCache(store)
        cache.merge("halo", exe)
        assert cache.merge("wiki zelda", "https://zelda.fandom.com/wiki/Zelda") is False
        assert cache.snapshot() == {"halo": exe}

    @pytest.mark.parametrize("alias,target", [("", "x"), ("   ", "x"), ("halo", ""), ("halo", "  ")])
    def test_merge_rejects_empty(self, store, alias, target):
        cache = KeywordCache(store)
        assert cache.merge(alias, target) is False
        assert len(cache) == 0

    def test_merge_overwrites_alias_owner(self, store, tmp_path):
        cache = KeywordCache(store)
        first = str(tmp_path / "a.exe")
        second = str(tmp_path / "b.exe")
        cache.merge("game", first)
        cache.merge("other", first)
        cache.merge("game", second)
        records = {r.target: r.aliases for r in cache.records()}
        assert records == {first: ["other"], second: ["game"]}

    @pytest.mark.parametrize("alias", ["halo,reach", "a=b", "=halo", "halo,"])
    def test_merge_rejects_unstorable_alias(self, store, exe, alias):
        cache = KeywordCache(store)
        assert cache.merge(alias, exe) is False
        assert len(cache) == 0

    @pytest.mark.parametrize("target", ["C:\\Games\\a.exe\nhalo=C:\\b.exe", "https://a.example/\r\nyt=https://b.example/"])
    def test_merge_rejects_multiline_target(self, store, target):
        cache = KeywordCache(store)
        assert cache.merge("game", target) is False
        assert len(cache) == 0

    def test_custom_scheme_is_not_made_absolute(self, store):
        cache = KeywordCache(store)
        cache.merge("mygame", "steam://rungameid/1")
        assert cache.lookup("mygame") == "steam://rungameid/1"

    def test_urls_are_kept_verbatim(self, store):
        cache = KeywordCache(store)
        cache.merge("yt", "https://youtube.com/results?search_query={}")
        assert cache.lookup("yt") == "https://youtube.com/results?search_query={}"

    def test_relative_paths_become_absolute(self, store):
        cache = KeywordCache(store)
        cache.merge("tool", "tool.exe")
        assert os.path.isabs(cache.lookup("tool"))


class TestPersist:
    def test_single_search_result_writes_single_line(self, store, exe):
        cache = KeywordCache(store)
        assert cache.merge_and_persist("halo", exe) is True
        assert store.read_text(encoding="utf-8") == f"halo={exe}\n"

    def test_persist_groups_duplicate_targets(self, store, exe):
        cache = KeywordCache(store)
        cache.merge("mcc", exe)
        cache.merge("halo", exe)
        cache.persist()
        assert store.read_text(encoding="utf-8") == f"halo,mcc={exe}\n"

    def test_persist_then_load_round_trips(self, store, exe):
        cache = KeywordCache(store)
        cache.merge("halo", exe)
        cache.merge("yt", "https://youtube.com/results?search_query={}")
        cache.persist()
        fresh = KeywordCache(store)
        fresh.load()
        assert fresh.snapshot() == cache.snapshot()

    def test_remove_and_persist(self, store, exe):
        cache = KeywordCache(store)
        cache.merge("halo", exe)
        cache.merge("steam", "https://store.steampowered.com")
        cache.persist()
        assert cache.remove_and_persist("halo") is True
        assert cache.lookup("halo") is None
        assert "halo" not in store.read_text(encoding="utf-8")
        assert cache.remove_and_persist("halo") is False

    def test_no_temporary_files_left_behind(self, store, exe):
        cache = KeywordCache(store)
        cache.merge_and_persist("halo", exe)
        assert sorted(p.name for p in store.parent.iterdir() if p.is_file()) == ["keywords.txt"]

    def test_write_failure_keeps_memory_state(self, tmp_path, exe):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("")
        cache = KeywordCache(blocker / "keywords.txt")
        with pytest.raises(KeywordStoreError):
            cache.merge_and_persist("halo", exe)
        assert cache.lookup("halo") == exe

    def test_concurrent_merges_never_tear_the_store(self, store, tmp_path):
        cache = KeywordCache(store)
        targets = [str(tmp_path / f"game{i}.exe") for i in range(20)]

        def worker(i):
            cache.merge_and_persist(f"game{i}", targets[i])

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        fresh = KeywordCache(store)
        fresh.load()
        assert len(fresh) == 20
        assert fresh.snapshot() == cache.snapshot()
