import uuid

import pytest

from emberorm.core import (
    CASCADE,
    RESTRICT,
    ForeignKey,
    IntegerField,
    ManyToManyField,
    Model,
    ModelConfigurationError,
    RelationshipError,
    RelationshipNotLoaded,
    StringField,
    UUIDField,
    relation_registry,
)
from emberorm.validation import ValidationError


class Shelf(Model):
    label = StringField(nullable=False)

    class Meta:
        table = "shelves"


class Volume(Model):
    title = StringField(nullable=False, max_length=20)
    pages = IntegerField(default=0)
    shelf_id = ForeignKey(Shelf, on_delete=CASCADE, navigation="shelf", related_name="volumes")

    class Meta:
        indexes = ["title", ("shelf_id", "title")]


class Sticker(Model):
    text = StringField()
    volumes = ManyToManyField(Volume, related_name="stickers")


def test_model_collects_fields_and_auto_identity():
    fields = list(Volume._meta.fields)
    assert fields[0] == "id"
    assert fields[1:] == ["title", "pages", "shelf_id"]
    assert isinstance(Volume._meta.primary_key, UUIDField)
    assert Shelf._meta.table_name == "shelves"
    assert Volume._meta.table_name == "volume"
    assert Volume._meta.indexes == [("title",), ("shelf_id", "title")]


def test_identity_is_assigned_once_and_immutable():
    shelf = Shelf(label="A")
    assert isinstance(shelf.pk, uuid.UUID)
    with pytest.raises(AttributeError):
        shelf.id = uuid.uuid4()
    shelf.id = shelf.pk  # same value is accepted


def test_foreign_key_requires_explicit_delete_policy():
    with pytest.raises(ModelConfigurationError):
        ForeignKey(Shelf)
    with pytest.raises(ModelConfigurationError):
        ForeignKey(Shelf, on_delete="SET NULL")


def test_foreign_key_is_immutable_and_accepts_instances():
    shelf = Shelf(label="A")
    other = Shelf(label="B")
    volume = Volume(title="Dune", shelf_id=shelf)
    assert volume.shelf_id == shelf.pk
    with pytest.raises(AttributeError):
        volume.shelf_id = other.pk


def test_navigation_kwarg_sets_reference_and_resolves_holder():
    shelf = Shelf(label="A")
    volume = Volume(title="Dune", shelf=shelf)
    assert volume.shelf_id == shelf.pk
    assert volume.is_loaded("shelf")
    assert volume.shelf is shelf


def test_relations_are_read_only():
    shelf = Shelf(label="A")
    volume = Volume(title="Dune", shelf=shelf)
    with pytest.raises(AttributeError):
        volume.shelf = Shelf(label="B")
    with pytest.raises(RelationshipError):
        Shelf(label="A", volumes=[])


def test_unknown_fields_rejected():
    with pytest.raises(TypeError):
        Shelf(label="A", colour="red")


def test_unbound_instance_raises_on_unresolved_relation():
    volume = Volume(title="Dune", shelf_id=uuid.uuid4())
    with pytest.raises(RelationshipNotLoaded):
        _ = volume.shelf


def test_reverse_relations_registered():
    volumes = Shelf._meta.get_relation("volumes")
    assert volumes.kind == "collection"
    assert volumes.owned is True
    assert volumes.target is Volume

    stickers = Volume._meta.get_relation("stickers")
    assert stickers.kind == "many_to_many"
    assert stickers.side == "right"
    assert stickers.through_table == "sticker_volume"
    assert stickers.owner_column == "volume_id"
    assert stickers.target_column == "sticker_id"
    assert "volumes" not in Sticker._meta.fields

    with pytest.raises(RelationshipError):
        Shelf._meta.get_relation("missing")


def test_registry_dependents_and_order():
    dependents = relation_registry.dependents(Shelf)
    assert [fk.name for fk in dependents] == ["shelf_id"]
    assert relation_registry.dependency_order([Volume, Sticker, Shelf]) == [Sticker, Shelf, Volume]


def test_string_targets_resolve_when_model_is_declared():
    class Drawer(Model):
        cabinet_id = ForeignKey("Cabinet", on_delete=RESTRICT, navigation="cabinet")

    class Cabinet(Model):
        name = StringField()

    fk = Drawer._meta.get_field("cabinet_id")
    assert fk.remote_model is Cabinet
    assert Cabinet._meta.get_relation("drawer_set").target is Drawer


def test_invalid_index_configuration():
    with pytest.raises(ModelConfigurationError):

        class Misindexed(Model):
            name = StringField()

            class Meta:
                indexes = ["missing"]


def test_change_detection_and_to_db_values():
    volume = Volume(title="Dune", pages=100, shelf_id=uuid.uuid4())
    assert not volume.is_dirty()
    volume.pages = 120
    assert volume.changed_fields() == ["pages"]
    values = volume.to_db_values(["pages", "shelf_id"])
    assert values == {"pages": 120, "shelf_id": str(volume.shelf_id)}
    volume.pages = 100
    assert not volume.is_dirty()


def test_field_conversion_errors_raise_validation_error():
    with pytest.raises(ValidationError):
        Volume(title="x" * 21, shelf_id=uuid.uuid4())
    with pytest.raises(ValidationError):
        Volume(title="Dune", pages="many", shelf_id=uuid.uuid4())
    with pytest.raises(ValidationError):
        Volume(title="Dune", shelf_id="not-a-uuid")


def test_from_db_builds_clean_instance():
    pk = uuid.uuid4()
    shelf_pk = uuid.uuid4()
    volume = Volume._from_db(
        {"id": str(pk), "title": "Dune", "pages": 3, "shelf_id": str(shelf_pk)}
    )
    assert volume.pk == pk
    assert volume.shelf_id == shelf_pk
    assert not volume.is_dirty()
    assert volume._session is None
