import pytest
from pymongo.errors import OperationFailure

from database import SUBSCRIPTIONS, VIDEOS, objid
from errors import DuplicateEntry, StoreFailure


def test_duplicate_key_becomes_duplicate_entry(store, users):
    key = {'subscriber': objid(users['alice']), 'channel': objid(users['bob'])}
    store.create_document(SUBSCRIPTIONS, key)
    with pytest.raises(DuplicateEntry):
        store.create_document(SUBSCRIPTIONS, key)


def test_driver_error_becomes_store_failure(store, monkeypatch):
    def fail(*args, **kwargs):
        raise OperationFailure('boom')

    monkeypatch.setattr(store.db[VIDEOS].__class__, 'aggregate', fail)
    with pytest.raises(StoreFailure) as info:
        store.run_pipeline(VIDEOS, [])
    assert 'run_pipeline' in info.value.message


def test_count_ignores_sort_stages(store, users, make_video):
    for _ in range(3):
        make_video(users['alice'])
    assert store.count(VIDEOS, [{'$sort': {'created_at': -1}}]) == 3
