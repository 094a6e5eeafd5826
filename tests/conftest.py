import os
import tempfile
import uuid
from datetime import datetime, timedelta, timezone

# Keep the module-level app's upload directory out of the working tree
os.environ.setdefault('UPLOAD_DIR', tempfile.mkdtemp(prefix='uploads-'))

import mongomock  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from database import USERS, VIDEOS, EntityStore, objid  # noqa: E402
from main import create_app  # noqa: E402
from media import LocalMediaStorage  # noqa: E402

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture()
def store():
    s = EntityStore(mongomock.MongoClient(), f'test_{uuid.uuid4().hex}')
    s.ensure_indexes()
    return s


@pytest.fixture()
def media(tmp_path):
    return LocalMediaStorage(str(tmp_path / 'uploads'))


@pytest.fixture()
def users(store):
    ids = {}
    for name in ('alice', 'bob', 'carol'):
        user = store.create_document(
            USERS,
            {
                'username': name,
                'full_name': name.capitalize(),
                'avatar': f'https://cdn.example.com/{name}.png',
                'email': f'{name}@example.com',
            },
        )
        ids[name] = str(user['_id'])
    return ids


@pytest.fixture()
def make_video(store):
    counter = {'n': 0}

    def _make(owner, title=None, published=True, minutes=None, **extra):
        counter['n'] += 1
        n = counter['n']
        doc = {
            'title': title or f'Video {n}',
            'description': f'Description {n}',
            'duration': 10.0 * n,
            'video_file': {'url': f'/static/videos/{n}.mp4', 'storage_id': f'videos/{n}.mp4'},
            'thumbnail': {'url': f'/static/thumbnails/{n}.jpg', 'storage_id': f'thumbnails/{n}.jpg'},
            'owner': objid(owner),
            'is_published': published,
            'views': 0,
            'created_at': BASE_TIME + timedelta(minutes=n if minutes is None else minutes),
        }
        doc.update(extra)
        return store.create_document(VIDEOS, doc)

    return _make


@pytest.fixture()
def client(store, media):
    app = create_app(store=store, media=media)
    with TestClient(app) as c:
        yield c


def auth(user_id):
    return {'X-User-Id': user_id}
