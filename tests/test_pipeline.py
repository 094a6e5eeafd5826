import pytest
from bson import ObjectId

from errors import InvalidIdentifier, ValidationFailed
from pipeline import (
    PipelineBuilder,
    build_liked_videos_pipeline,
    build_subscribers_pipeline,
    build_video_pipeline,
)
from schemas import VideoQuery


def stage_names(stages):
    return [next(iter(s)) for s in stages]


def test_default_listing_is_published_newest_first():
    stages = build_video_pipeline(VideoQuery())
    assert stages == [
        {'$match': {'is_published': True}},
        {'$sort': {'created_at': -1, '_id': -1}},
    ]


def test_full_query_keeps_fixed_stage_order():
    owner = str(ObjectId())
    stages = build_video_pipeline(
        VideoQuery(text_query='cats', owner_id=owner, sort_by='views', sort_type='asc'),
        search_index='idx',
    )
    assert stage_names(stages) == ['$search', '$match', '$match', '$sort']
    assert stages[0] == {
        '$search': {'index': 'idx', 'text': {'query': 'cats', 'path': ['title', 'description']}}
    }
    assert stages[1] == {'$match': {'owner': ObjectId(owner)}}
    assert stages[3] == {'$sort': {'views': 1, '_id': 1}}


def test_blank_search_text_adds_no_search_stage():
    stages = build_video_pipeline(VideoQuery(text_query='   '))
    assert '$search' not in stage_names(stages)


def test_unpublished_included_when_not_restricted():
    stages = build_video_pipeline(VideoQuery(published_only=False, sort_by='duration'))
    assert stages == [{'$sort': {'duration': -1, '_id': -1}}]


def test_malformed_owner_fails_before_building():
    with pytest.raises(InvalidIdentifier):
        build_video_pipeline(VideoQuery(owner_id='not-an-id'))


@pytest.mark.parametrize('sort_by, sort_type', [('password', 'asc'), ('views', 'sideways')])
def test_unknown_sort_options_rejected(sort_by, sort_type):
    with pytest.raises(ValidationFailed):
        build_video_pipeline(VideoQuery(sort_by=sort_by, sort_type=sort_type))


def test_long_direction_names_accepted():
    stages = build_video_pipeline(VideoQuery(sort_type='ascending'))
    assert stages[-1] == {'$sort': {'created_at': 1, '_id': 1}}


def test_liked_videos_pipeline_joins_then_promotes_video():
    actor = ObjectId()
    stages = build_liked_videos_pipeline(actor)
    assert stage_names(stages) == ['$match', '$lookup', '$unwind', '$match', '$sort', '$replaceRoot']
    assert stages[0]['$match'] == {'liked_by': actor, 'video': {'$exists': True}}
    assert stages[-1] == {'$replaceRoot': {'newRoot': '$liked_video'}}


def test_subscribers_pipeline_projects_public_profile():
    stages = build_subscribers_pipeline(str(ObjectId()))
    assert stage_names(stages)[-1] == '$project'
    assert 'email' not in stages[-1]['$project']


def test_builder_returns_copy():
    builder = PipelineBuilder().match({'a': 1})
    built = builder.build()
    built.append({'$limit': 1})
    assert builder.build() == [{'$match': {'a': 1}}]
