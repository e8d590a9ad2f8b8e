"""
Tests for database introspection: tables, columns, example values and id counters.
"""

from sqlalchemy import text

from table_importer.db.schema import Column, Condition, SchemaInspector, Table, normalize_type_name


def test_normalize_type_name():
    assert normalize_type_name("DECIMAL(5, 2)") == "decimal"
    assert normalize_type_name("VARCHAR(100)") == "varchar"
    assert normalize_type_name("INTEGER UNSIGNED") == "integer"
    assert normalize_type_name("") == ""


def test_get_tables_lists_user_tables_with_row_counts(inspector):
    """Internal SQLite tables are hidden, row counts are filled in."""
    tables = inspector.get_tables()

    assert [table.name for table in tables] == ["country", "measurement", "person"]
    counts = {table.name: table.row_count for table in tables}
    assert counts["country"] == 2
    assert counts["person"] == 0


def test_get_table_unknown_returns_none(inspector):
    assert inspector.get_table("nope") is None
    assert inspector.get_table("") is None


def test_columns_describe_keys_and_nullability(person):
    name = person.get_column("name")
    country_id = person.get_column("country_id")
    identifier = person.get_column("id")

    assert name.can_be_null is False
    assert name.type == "varchar"
    assert identifier.is_primary_key is True
    assert identifier.can_be_null is True
    assert country_id.is_foreign_key is True
    assert country_id.foreign_key_table == "country"
    assert country_id.foreign_key_column == "id"
    assert person.get_column("height").is_decimal is True
    assert person.get_column("born").is_date is True
    assert person.get_column("created_on").is_date is True
    assert person.get_column("note").is_foreign_key is False


def test_columns_are_loaded_once(inspector, engine):
    """Schema changes after the first load are not picked up by the same Table object."""
    table = inspector.get_table("country")
    first = inspector.get_columns(table)

    with engine.begin() as conn:
        conn.execute(text("ALTER TABLE country ADD COLUMN code VARCHAR(3)"))

    assert inspector.get_columns(table) == first
    assert [column.name for column in inspector.get_columns(Table("country"))] == ["id", "name", "code"]


def test_column_equality_uses_name_and_type():
    a = Column(name="name", type="varchar", can_be_null=False)
    b = Column(name="name", type="varchar")
    c = Column(name="name", type="text")

    assert a == b
    assert hash(a) == hash(b)
    assert a != c


def test_natural_condition_of_foreign_key(person):
    condition = Condition.for_column(person.get_column("country_id"))

    assert condition == Condition(table="country", column="id")
    assert Condition.for_column(person.get_column("name")) is None


def test_example_values_are_distinct_and_sorted(engine, inspector):
    with engine.begin() as conn:
        conn.execute(text("INSERT INTO country (name) VALUES ('France'), ('Austria')"))
    table = inspector.get_table("country")
    inspector.get_columns(table)

    values = inspector.get_example_values(table, table.get_column("name"))

    assert values == ["Austria", "France", "Germany"]
    assert inspector.get_example_values(table, table.get_column("name"), limit=1) == ["Austria"]


def test_auto_increment_follows_inserts_and_resets(engine, inspector):
    table = inspector.get_table("country")
    assert inspector.get_auto_increment(table) == 3

    with engine.begin() as conn:
        conn.execute(text("INSERT INTO country (name) VALUES ('Spain'), ('Italy')"))
        conn.execute(text("DELETE FROM country WHERE id > 2"))

    assert inspector.get_auto_increment(table) == 5
    assert inspector.reset_auto_increment(table) == 3
    assert inspector.get_auto_increment(table) == 3


def test_max_id_of_empty_table(inspector):
    assert inspector.get_max_id(Table("person")) == 0


def test_dialect_name(engine):
    assert SchemaInspector(engine).dialect == "sqlite"
