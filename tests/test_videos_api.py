import os

from bson import ObjectId

from conftest import auth
from database import COMMENTS, LIKES, VIDEOS


def publish(client, user_id, title='My clip', description='A short clip'):
    r = client.post(
        '/videos',
        data={'title': title, 'description': description, 'duration': '12.5'},
        files={
            'video_file': ('clip.mp4', b'\x00\x01video', 'video/mp4'),
            'thumbnail': ('thumb.jpg', b'\xff\xd8img', 'image/jpeg'),
        },
        headers=auth(user_id),
    )
    assert r.status_code == 200, r.text
    return r.json()['data']


def test_publish_and_fetch(client, users, media):
    video = publish(client, users['alice'])
    assert video['owner']['username'] == 'alice'
    assert video['is_published'] is True
    assert video['duration'] == 12.5
    assert video['likes_count'] == 0
    assert os.path.exists(media.path_for(video['video_file']['storage_id']))

    r = client.get(f"/videos/{video['id']}")
    assert r.status_code == 200
    assert r.json()['data']['views'] == 1


def test_publish_requires_identity(client):
    r = client.post('/videos', data={'title': 't', 'description': 'd'})
    assert r.status_code == 401
    assert r.json()['error'] == 'Unauthenticated'


def test_unknown_identity_rejected(client):
    r = client.post('/tweets', json={'content': 'hi'}, headers=auth(str(ObjectId())))
    assert r.status_code == 401


def test_publish_validation(client, users):
    r = client.post(
        '/videos',
        data={'title': '  ', 'description': 'd'},
        files={'video_file': ('a.mp4', b'x', 'video/mp4'), 'thumbnail': ('a.jpg', b'x', 'image/jpeg')},
        headers=auth(users['alice']),
    )
    assert r.status_code == 400
    assert r.json()['error'] == 'ValidationFailed'

    r = client.post(
        '/videos',
        data={'title': 't', 'description': 'd'},
        files={'video_file': ('a.mp4', b'x', 'video/mp4')},
        headers=auth(users['alice']),
    )
    assert r.status_code == 400
    assert r.json()['message'] == 'Thumbnail is required'


def test_rejected_publish_stores_no_media(client, users, media, store):
    for data in ({'title': 'x' * 121, 'description': 'd'}, {'title': 't', 'description': 'd', 'duration': '-1'}):
        r = client.post(
            '/videos',
            data=data,
            files={'video_file': ('a.mp4', b'x', 'video/mp4'), 'thumbnail': ('a.jpg', b'x', 'image/jpeg')},
            headers=auth(users['alice']),
        )
        assert r.status_code == 400
        assert r.json()['error'] == 'ValidationFailed'

    assert os.listdir(os.path.join(media.upload_dir, 'videos')) == []
    assert os.listdir(os.path.join(media.upload_dir, 'thumbnails')) == []
    assert store.get_documents(VIDEOS) == []


def test_like_toggle_scenario(client, users):
    video = publish(client, users['alice'])

    r = client.post(f"/videos/{video['id']}/like", headers=auth(users['bob']))
    assert r.status_code == 200
    assert r.json()['data']['state'] == 'active'
    assert r.json()['data']['likes_count'] == 1
    assert client.get(f"/videos/{video['id']}", headers=auth(users['bob'])).json()['data']['is_liked'] is True

    r = client.post(f"/videos/{video['id']}/like", headers=auth(users['bob']))
    assert r.json()['data']['state'] == 'inactive'
    assert r.json()['data']['likes_count'] == 0
    assert client.get(f"/videos/{video['id']}", headers=auth(users['bob'])).json()['data']['is_liked'] is False


def test_like_missing_video(client, users):
    r = client.post(f'/videos/{ObjectId()}/like', headers=auth(users['bob']))
    assert r.status_code == 404
    assert r.json()['error'] == 'TargetNotFound'


def test_first_page_of_listing(client, users, make_video):
    videos = [make_video(users['alice']) for _ in range(5)]
    r = client.get('/videos', params={'page': 1, 'limit': 2})
    body = r.json()['data']

    assert [v['id'] for v in body['results']] == [str(videos[4]['_id']), str(videos[3]['_id'])]
    assert body['total'] == 5
    assert body['total_pages'] == 3
    assert body['has_next'] is True
    assert body['has_prev'] is False
    assert all(v['is_liked'] is False for v in body['results'])


def test_listing_clamps_paging(client, users, make_video):
    make_video(users['alice'])
    body = client.get('/videos', params={'page': '-3', 'limit': 'abc'}).json()['data']
    assert body['page'] == 1
    assert body['limit'] == 10
    assert body['total'] == 1


def test_listing_filters(client, users, make_video):
    mine = make_video(users['alice'], duration=5)
    make_video(users['alice'], published=False)
    make_video(users['bob'])

    body = client.get('/videos', params={'user_id': users['alice']}).json()['data']
    assert [v['id'] for v in body['results']] == [str(mine['_id'])]

    r = client.get('/videos', params={'sort_by': 'duration', 'sort_type': 'asc'})
    durations = [v['duration'] for v in r.json()['data']['results']]
    assert durations == sorted(durations)


def test_listing_rejects_bad_options(client):
    r = client.get('/videos', params={'user_id': 'bogus'})
    assert r.status_code == 400
    assert r.json()['error'] == 'InvalidIdentifier'
    r = client.get('/videos', params={'sort_by': 'owner'})
    assert r.status_code == 400
    assert r.json()['error'] == 'ValidationFailed'


def test_non_owner_cannot_update(client, users, store, make_video):
    video = make_video(users['bob'], title='Original')
    r = client.patch(
        f"/videos/{video['_id']}",
        data={'title': 'Hijacked', 'description': 'x'},
        headers=auth(users['alice']),
    )
    assert r.status_code == 403
    assert r.json()['error'] == 'Unauthorized'
    assert store.find_by_id(VIDEOS, video['_id'])['title'] == 'Original'


def test_owner_update_replaces_thumbnail(client, users, media):
    video = publish(client, users['alice'])
    old_thumb = video['thumbnail']['storage_id']

    r = client.patch(
        f"/videos/{video['id']}",
        data={'title': 'New title', 'description': 'New description'},
        files={'thumbnail': ('new.png', b'png', 'image/png')},
        headers=auth(users['alice']),
    )
    assert r.status_code == 200
    data = r.json()['data']
    assert data['title'] == 'New title'
    assert data['thumbnail']['storage_id'] != old_thumb
    assert not os.path.exists(media.path_for(old_thumb))
    assert os.path.exists(media.path_for(data['thumbnail']['storage_id']))


def test_delete_cascades(client, users, store, media):
    video = publish(client, users['alice'])
    comment = client.post(
        f"/videos/{video['id']}/comments", json={'content': 'great'}, headers=auth(users['bob'])
    ).json()['data']
    client.post(f"/videos/{video['id']}/like", headers=auth(users['bob']))
    client.post(f"/comments/{comment['id']}/like", headers=auth(users['carol']))

    assert client.delete(f"/videos/{video['id']}", headers=auth(users['bob'])).status_code == 403

    r = client.delete(f"/videos/{video['id']}", headers=auth(users['alice']))
    assert r.status_code == 200
    assert client.get(f"/videos/{video['id']}").status_code == 404
    assert store.count(COMMENTS, []) == 0
    assert store.count(LIKES, []) == 0
    assert not os.path.exists(media.path_for(video['video_file']['storage_id']))
    assert not os.path.exists(media.path_for(video['thumbnail']['storage_id']))


def test_toggle_publish_hides_video(client, users, make_video):
    video = make_video(users['alice'])
    r = client.patch(f"/videos/{video['_id']}/publish", headers=auth(users['alice']))
    assert r.json()['data']['is_published'] is False

    assert client.get(f"/videos/{video['_id']}").status_code == 404
    assert client.get(f"/videos/{video['_id']}", headers=auth(users['alice'])).status_code == 200
    assert client.get('/videos').json()['data']['total'] == 0

    r = client.patch(f"/videos/{video['_id']}/publish", headers=auth(users['bob']))
    assert r.status_code == 403


def test_malformed_video_id(client):
    r = client.get('/videos/123')
    assert r.status_code == 400
    assert r.json()['error'] == 'InvalidIdentifier'
