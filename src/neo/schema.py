"""
Graph schema for ingested posts.

(:Tweet)-[:POSTED_BY]->(:User)      written per batch
(:Tweet)-[:REPLIES_TO]->(:Tweet)    derived after all batches commit
(:Tweet)-[:MENTIONS]->(:User)       derived after all batches commit

Tweet and User are both keyed by a unique ``id``. Every statement here is
idempotent so a retried or re-run load converges on the same graph.
"""

POST_LABEL = "Tweet"
AUTHOR_LABEL = "User"

CONSTRAINT_STATEMENTS = (
    f"CREATE CONSTRAINT user_id_unique IF NOT EXISTS "
    f"FOR (u:{AUTHOR_LABEL}) REQUIRE u.id IS UNIQUE",
    f"CREATE CONSTRAINT tweet_id_unique IF NOT EXISTS "
    f"FOR (t:{POST_LABEL}) REQUIRE t.id IS UNIQUE",
)

# Post fields are always overwritten; author fields are only set when the
# node is first created so a later, sparser snapshot can not clobber it.
UPSERT_POSTS = f"""
UNWIND $batch AS tweet
MERGE (t:{POST_LABEL} {{id: tweet.id}})
SET
    t.text = tweet.text,
    t.created_at = tweet.created_at,
    t.reply_to = tweet.reply_to,
    t.lang = tweet.lang,
    t.hashtags = tweet.hashtags,
    t.user_mentions = tweet.user_mentions,
    t.is_reshare = tweet.is_reshare
MERGE (u:{AUTHOR_LABEL} {{id: tweet.userId}})
ON CREATE SET
    u.name = tweet.userName,
    u.location = tweet.userLocation,
    u.verified = tweet.userVerified,
    u.followers_count = tweet.userFollowersCount,
    u.friends_count = tweet.userFriendsCount,
    u.listed_count = tweet.userListedCount,
    u.favourites_count = tweet.userFavouritesCount,
    u.statuses_count = tweet.userStatusesCount,
    u.created_at = tweet.userCreatedAt,
    u.utc_offset = tweet.userUtcOffset
MERGE (t)-[:POSTED_BY]->(u)
"""

LINK_REPLIES = f"""
CALL apoc.periodic.iterate(
  'MATCH (t1:{POST_LABEL}) WHERE t1.reply_to IS NOT NULL RETURN t1',
  'MATCH (t2:{POST_LABEL} {{id: t1.reply_to}}) MERGE (t1)-[:REPLIES_TO]->(t2)',
  {{batchSize: $batch_size, parallel: false}}
)
YIELD batches, total, errorMessages
RETURN batches, total, errorMessages
"""

LINK_MENTIONS = f"""
CALL apoc.periodic.iterate(
  'MATCH (t:{POST_LABEL}) WHERE t.user_mentions IS NOT NULL
   UNWIND t.user_mentions AS uid
   MATCH (u:{AUTHOR_LABEL} {{id: uid}}) RETURN t, u',
  'MERGE (t)-[:MENTIONS]->(u)',
  {{batchSize: $batch_size, parallel: false}}
)
YIELD batches, total, errorMessages
RETURN batches, total, errorMessages
"""
