import pytest

from postal_sync.common.errors import MalformedRecord
from postal_sync.common.models import PostalCodeRecord
from postal_sync.pipeline.normalise import clean_town_names, consolidate, normalize_entry


def ken_all_row(code="1000001", town="千代田", town_kana="ﾁﾖﾀﾞ", city="千代田区", prefecture="東京都"):
    return [
        "13101",
        "100  ",
        code,
        "ﾄｳｷｮｳﾄ",
        "ﾁﾖﾀﾞｸ",
        town_kana,
        prefecture,
        city,
        town,
        "0",
        "0",
        "0",
        "0",
        "0",
        "0",
    ]


def record(code, town, town_kana="", city="千代田区", prefecture="東京都"):
    return PostalCodeRecord(
        code=code,
        fields={
            "prefecture": prefecture,
            "prefecture_kana": "ﾄｳｷｮｳﾄ",
            "city": city,
            "city_kana": "ﾁﾖﾀﾞｸ",
            "town": town,
            "town_kana": town_kana,
        },
    )


def test_normalize_ken_all_row():
    rec = normalize_entry(ken_all_row())

    assert rec.code == "1000001"
    assert rec.fields["prefecture"] == "東京都"
    assert rec.fields["town_kana"] == "ﾁﾖﾀﾞ"
    assert list(rec.fields) == sorted(rec.fields)


def test_normalize_mapping_accepts_display_form_and_any_order():
    first = normalize_entry({"town": "丸の内", "city": "千代田区", "prefecture": "東京都", "code": "100-0005"})
    second = normalize_entry({"prefecture": "東京都", "code": "1000005", "city": "千代田区", "town": "丸の内"})

    assert first == second
    assert first.code == "1000005"
    assert first.fields["town_kana"] == ""


def test_normalize_accepts_postal_code_key_name():
    rec = normalize_entry({"postal_code": "0600000", "prefecture": "北海道", "city": "札幌市中央区"})
    assert rec.code == "0600000"


def test_normalize_rejects_short_rows():
    with pytest.raises(MalformedRecord):
        normalize_entry(ken_all_row()[:10])


def test_normalize_rejects_bad_code():
    with pytest.raises(MalformedRecord):
        normalize_entry(ken_all_row(code="10000"))


def test_normalize_rejects_missing_required_field():
    with pytest.raises(MalformedRecord):
        normalize_entry(ken_all_row(city=""))


def test_normalize_rejects_unsupported_entry():
    with pytest.raises(MalformedRecord):
        normalize_entry("1000001,東京都")


def test_clean_town_names_clears_placeholder_towns():
    cleaned = list(
        clean_town_names(
            [
                record("1000000", "以下に掲載がない場合", "ｲｶﾆｹｲｻｲｶﾞﾅｲﾊﾞｱｲ"),
                record("3060433", "猿島町の次に番地が来る場合", "ｻｼﾏﾏﾁﾉﾂｷﾞﾆﾊﾞﾝﾁｶﾞｸﾙﾊﾞｱｲ"),
                record("3998301", "東筑摩郡一円", "ﾋｶﾞｼﾁｸﾏｸﾞﾝｲﾁｴﾝ"),
                record("1000301", "一円", "ｲﾁｴﾝ"),
            ]
        )
    )

    assert [r.fields["town"] for r in cleaned] == ["", "", "", "一円"]
    assert cleaned[0].fields["town_kana"] == ""


def test_clean_town_names_strips_closed_brackets():
    cleaned = list(clean_town_names([record("0600042", "大通西（１～１９丁目）", "ｵｵﾄﾞｵﾘﾆｼ(1-19ﾁｮｳﾒ)")]))

    assert cleaned[0].fields["town"] == "大通西"
    assert cleaned[0].fields["town_kana"] == "ｵｵﾄﾞｵﾘﾆｼ"


def test_clean_town_names_drops_continuation_rows():
    rows = [
        record("0050000", "藤野（４００、４００－２番地", "ﾌｼﾞﾉ(400､400-2ﾊﾞﾝﾁ"),
        record("0050000", "、９０２番地）", "､902ﾊﾞﾝﾁ)"),
        record("0050001", "真駒内", "ﾏｺﾏﾅｲ"),
    ]

    cleaned = list(clean_town_names(rows))

    assert [(r.code, r.fields["town"], r.fields["town_kana"]) for r in cleaned] == [
        ("0050000", "藤野", "ﾌｼﾞﾉ"),
        ("0050001", "真駒内", "ﾏｺﾏﾅｲ"),
    ]


def test_consolidate_blanks_conflicting_pairs_and_sorts():
    merged = consolidate(
        [
            record("4520961", "春日町", "ｶｽｶﾞﾁｮｳ", city="清須市"),
            record("1000001", "千代田", "ﾁﾖﾀﾞ"),
            record("4520961", "須ケ口", "ｽｶｸﾞﾁ", city="清須市"),
        ]
    )

    assert [r.code for r in merged] == ["1000001", "4520961"]
    assert merged[1].fields["town"] == ""
    assert merged[1].fields["town_kana"] == ""
    assert merged[1].fields["city"] == "清須市"
