import os

from static_snapshot.assets import FAILED_KEY, PENDING_KEY, PROCESS_JOB
from static_snapshot.db import Database
from static_snapshot.url_helper import hash_filename

from conftest import SITE


def read(path):
    with open(path, "rb") as f:
        return f.read()


def test_ensure_local_fetches_once(site, server):
    server.add("/img/logo.png", b"PNG")
    url = SITE + "/img/logo.png"

    first = site.assets.ensure_local(url)
    second = site.assets.ensure_local(url)

    assert first == second == os.path.join(site.assets_dir, "logo.png")
    assert read(first) == b"PNG"
    assert server.hits["/img/logo.png"] == 1
    assert site.assets.downloaded() == [url]


def test_ensure_local_returns_none_on_failure(site, server):
    assert site.assets.ensure_local(SITE + "/missing.png") is None
    assert not os.path.exists(os.path.join(site.assets_dir, "missing.png"))
    assert site.assets.downloaded() == []


def test_stylesheet_references_are_localized(site, server):
    server.add("/css/style.css",
               b"@import 'reset.css';\n"
               b"body{background:url(../img/bg.png)}\n"
               b".x{background:url(\"https://fonts.other.org/f.woff2\")}\n"
               b".y{background:url(data:image/png;base64,AAAA)}")
    server.add("/css/reset.css", b"html{margin:0}")
    server.add("/img/bg.png", b"BG")

    path = site.assets.ensure_local(SITE + "/css/style.css")
    css = read(path).decode()

    assert '@import "reset.css"' in css
    assert "url(bg.png)" in css
    assert 'url("https://fonts.other.org/f.woff2")' in css
    assert "url(data:image/png;base64,AAAA)" in css
    assert read(os.path.join(site.assets_dir, "bg.png")) == b"BG"
    assert os.path.exists(os.path.join(site.assets_dir, "reset.css"))
    assert SITE + "/img/bg.png" in site.assets.downloaded()


def test_import_cycles_terminate(site, server):
    server.add("/a.css", b"@import \"b.css\";")
    server.add("/b.css", b"@import \"a.css\";")

    path = site.assets.ensure_local(SITE + "/a.css")

    assert path is not None
    assert server.hits["/a.css"] == 1
    assert server.hits["/b.css"] == 1
    assert read(os.path.join(site.assets_dir, "b.css")) == b'@import "a.css";'


def test_nested_references_beyond_depth_limit_are_queued(site, server, config):
    config.download.max_nested_depth = 0
    server.add("/style.css", b"body{background:url(/img/bg.png)}")

    path = site.assets.ensure_local(SITE + "/style.css")

    assert "url(bg.png)" in read(path).decode()
    assert SITE + "/img/bg.png" in site.assets.pending()
    assert server.hits["/img/bg.png"] == 0


def test_non_utf8_stylesheet_bytes_survive(site, server):
    server.add("/latin.css", b".q:before{content:'\xe9'}")
    path = site.assets.ensure_local(SITE + "/latin.css")
    assert read(path) == b".q:before{content:'\xe9'}"


def test_script_asset_urls_are_localized(site, server):
    server.add("/js/app.js",
               b'var hero = "https://www.example.com/img/hero.jpg";\n'
               b"var cdn = 'https://cdn.other.com/x.png';\n")
    server.add("/img/hero.jpg", b"JPG")

    path = site.assets.ensure_local(SITE + "/js/app.js")
    js = read(path).decode()

    assert 'var hero = "/assets/hero.jpg";' in js
    assert "'https://cdn.other.com/x.png'" in js
    assert os.path.exists(os.path.join(site.assets_dir, "hero.jpg"))


def test_queue_merges_and_schedules(site, scheduler, config):
    a, b = SITE + "/a.png", SITE + "/b.png"

    assert site.assets.queue([a, b, a]) == 2
    assert site.assets.pending() == [a, b]
    assert scheduler.jobs == {PROCESS_JOB: config.batch.initial_delay}

    assert site.assets.queue([a]) == 0
    assert site.assets.pending() == [a, b]


def test_queue_skips_downloaded(site, server):
    server.add("/a.png", b"A")
    url = SITE + "/a.png"
    site.assets.ensure_local(url)
    assert site.assets.queue([url]) == 0
    assert site.assets.pending() == []


def test_drain_batch_is_bounded_and_rearms(site, server, scheduler, config):
    server.add("/a.png", b"A")
    server.add("/b.png", b"B")
    urls = [SITE + "/a.png", SITE + "/missing.png", SITE + "/b.png"]
    site.assets.queue(urls)
    scheduler.jobs.clear()

    result = site.assets.drain_batch(2)

    assert (result.processed, result.failed, result.remaining) == (1, 1, 1)
    assert site.assets.pending() == [SITE + "/b.png"]
    assert scheduler.jobs == {PROCESS_JOB: config.batch.reschedule_delay}

    scheduler.jobs.clear()
    result = site.assets.drain_batch(2)
    assert (result.processed, result.failed, result.remaining) == (1, 0, 0)
    assert scheduler.jobs == {}
    assert site.store.get(PENDING_KEY) is None


def test_drop_policy_forgets_failures(site, store):
    url = SITE + "/missing.png"
    site.assets.queue([url])

    site.assets.drain_batch(5)

    assert site.assets.pending() == []
    assert store.get(FAILED_KEY) == {url: 1}


def test_requeue_policy_retries_in_later_batches(site, store, config):
    config.batch.failure_policy = "requeue"
    config.batch.max_requeues = 2
    url = SITE + "/missing.png"
    site.assets.queue([url])

    site.assets.drain_batch(5)
    assert site.assets.pending() == [url]

    site.assets.drain_batch(5)
    assert site.assets.pending() == []
    assert store.get(FAILED_KEY) == {url: 2}


def test_success_clears_failure_count(site, server, store, config):
    config.batch.failure_policy = "requeue"
    url = SITE + "/flaky.png"
    site.assets.queue([url])
    site.assets.drain_batch(5)
    assert store.get(FAILED_KEY) == {url: 1}

    server.add("/flaky.png", b"OK")
    site.assets.drain_batch(5)
    assert store.get(FAILED_KEY) == {}
    assert url in site.assets.downloaded()


def test_filename_collisions_use_hash_names(site):
    first = SITE + "/a/logo.png"
    second = SITE + "/b/logo.png"

    assert site.assets.local_name(first) == "logo.png"
    assert site.assets.local_name(second) == hash_filename(second)
    assert site.assets.local_name(first) == "logo.png"


def test_queue_survives_reopen(site, config):
    url = SITE + "/a.png"
    site.assets.queue([url])

    other = Database(config.db_path)
    try:
        assert other.get(PENDING_KEY) == [url]
    finally:
        other.close()


def test_reference_reports_state(site, server):
    url = SITE + "/img/logo.png"
    assert site.assets.reference(url).state == "pending"

    server.add("/img/logo.png", b"PNG")
    site.assets.ensure_local(url)
    ref = site.assets.reference(url)
    assert ref.state == "fetched"
    assert ref.derived_filename == "logo.png"
    assert ref.local_path == os.path.join(site.assets_dir, "logo.png")


def test_redirect_loop_does_not_block_the_queue(site, server):
    loop, ok = SITE + "/img/loop.png", SITE + "/img/ok.png"
    server.redirect("/img/loop.png", loop)
    server.add("/img/ok.png", b"OK")
    site.assets.queue([loop, ok])

    result = site.process_pending_batch(5)

    assert (result.processed, result.failed, result.remaining) == (1, 1, 0)
    assert site.assets.pending() == []
    assert site.assets.downloaded() == [ok]


def test_dynamic_stylesheet_is_rewritten_by_content_type(site, server):
    server.add("/style.php", b"body{background:url(/img/bg.png)}",
               headers={"Content-Type": "text/css; charset=UTF-8"})
    server.add("/img/bg.png", b"BG")
    url = SITE + "/style.php?ver=2"

    path = site.assets.ensure_local(url)

    assert path == os.path.join(site.assets_dir, hash_filename(url))
    assert read(path) == b"body{background:url(bg.png)}"
    assert os.path.exists(os.path.join(site.assets_dir, "bg.png"))


def test_opaque_payload_is_stored_verbatim(site, server):
    server.add("/download", b"url(/img/bg.png)", headers={"Content-Type": "application/octet-stream"})
    path = site.assets.ensure_local(SITE + "/download")
    assert read(path) == b"url(/img/bg.png)"
    assert server.hits["/img/bg.png"] == 0
