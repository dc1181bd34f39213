from app.models import ABSENT_RATING, MediaRecord, MediaType, SourceType


def _record(**overrides) -> MediaRecord:
    payload = {
        "source_type": "douban",
        "source_id": "1292052",
        "media_type": "movie",
        "title_zh": "肖申克的救赎",
    }
    payload.update(overrides)
    return MediaRecord.model_validate(payload)


def test_records_are_equal_when_identity_matches():
    stale = _record(rating_douban="9.6", summary="old")
    fresh = _record(rating_douban="9.7", summary="new", title_zh="刺激1995")

    assert stale == fresh
    assert hash(stale) == hash(fresh)
    assert len({stale, fresh}) == 1


def test_records_differ_across_sources_with_same_id():
    douban = _record()
    tmdb = _record(source_type="tmdb")

    assert douban != tmdb


def test_year_is_derived_from_release_date():
    record = _record(release_date="1994-09-10(多伦多电影节)")

    assert record.year == "1994"


def test_explicit_year_is_kept():
    record = _record(release_date="1994-09-10", year="1995")

    assert record.year == "1995"


def test_missing_ratings_use_absent_sentinel():
    record = _record(rating_douban=None, rating_tmdb="not-a-number")

    assert record.rating_douban == ABSENT_RATING
    assert record.rating_tmdb == ABSENT_RATING
    assert record.rating_bangumi == ABSENT_RATING
    assert not record.has_rating("rating_douban")


def test_zero_rating_is_a_real_rating():
    record = _record(rating_bangumi=0)

    assert record.rating_bangumi == 0.0
    assert record.has_rating("rating_bangumi")


def test_blank_and_null_text_become_absent():
    record = _record(title_original="  ", summary="null", duration="")

    assert record.title_original is None
    assert record.summary is None
    assert record.duration is None


def test_poster_urls_are_absolute_or_absent():
    protocol_relative = _record(poster_url="//img1.doubanio.com/view/photo/p480747492.jpg")
    relative = _record(poster_url="/view/photo/p480747492.jpg")

    assert protocol_relative.poster_url == "https://img1.doubanio.com/view/photo/p480747492.jpg"
    assert relative.poster_url is None


def test_integer_source_id_is_coerced():
    record = _record(source_type="tmdb", source_id=278)

    assert record.source_id == "278"
    assert record.identity == (SourceType.TMDB, "278")


def test_genres_accept_comma_separated_text():
    record = _record(genres="剧情,犯罪, ")

    assert record.genres == ("剧情", "犯罪")


def test_collected_flag_toggles_without_affecting_identity():
    record = _record()
    other = _record()

    record.set_collected(True)

    assert record.collected is True
    assert other.collected is False
    assert record == other


def test_fill_missing_keeps_existing_values():
    record = _record(summary="已有简介")
    record.set_collected(True)

    filled = record.fill_missing(summary="新的简介", staff="导演: 弗兰克·德拉邦特", rating_douban=9.7)

    assert filled.summary == "已有简介"
    assert filled.staff == "导演: 弗兰克·德拉邦特"
    assert filled.rating_douban == 9.7
    assert filled.collected is True


def test_duration_label_depends_on_media_type():
    movie = _record(duration="142")
    series = _record(source_id="26357307", media_type=MediaType.TV, duration="24")
    free_form = _record(duration="142分钟")

    assert movie.duration_label() == "142分钟"
    assert series.duration_label() == "24集"
    assert free_form.duration_label() == "142分钟"


def test_display_title_falls_back_to_original_title():
    record = _record(title_zh=None, title_original="The Shawshank Redemption")

    assert record.display_title() == "The Shawshank Redemption"


def test_payload_includes_runtime_fields():
    record = _record(duration="142")
    record.set_collected(True)

    payload = record.to_payload()

    assert payload["source_type"] == "douban"
    assert payload["collected"] is True
    assert payload["duration_label"] == "142分钟"
    assert payload["rating_tmdb"] == ABSENT_RATING
