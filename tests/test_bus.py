from athena.core.bus import Channel


def test_publish_follows_subscription_order_and_filters_by_name():
    channel = Channel("test")
    seen = []
    channel.subscribe(lambda name, args: seen.append(("all", name)))
    channel.subscribe(lambda name, args: seen.append(("only-b", name)), name="b")

    channel.publish("a", {})
    channel.publish("b", {})

    assert seen == [("all", "a"), ("all", "b"), ("only-b", "b")]


def test_once_subscription_fires_a_single_time():
    channel = Channel("test")
    hits = []

    def listener(name, args):
        hits.append(name)
        # Re-entrant publish must not deliver to the once-listener again.
        if len(hits) == 1:
            channel.publish("ready", {})

    channel.subscribe(listener, name="ready", once=True)
    channel.publish("ready", {})
    channel.publish("ready", {})

    assert hits == ["ready"]
    assert len(channel) == 0


def test_listener_errors_are_contained():
    channel = Channel("test")
    seen = []

    def explode(name, args):
        raise RuntimeError("nope")

    channel.subscribe(explode)
    channel.subscribe(lambda name, args: seen.append(args))

    delivered = channel.publish("x", {"k": 1})

    assert seen == [{"k": 1}]
    assert delivered == 2


def test_unsubscribe_and_drop_owner():
    channel = Channel("test")

    def mine(name, args):
        pass

    def theirs(name, args):
        pass

    channel.subscribe(mine, owner="p1")
    channel.subscribe(theirs, owner="p2")
    channel.subscribe(lambda name, args: None, owner="p1")

    assert channel.unsubscribe(theirs) is True
    assert channel.unsubscribe(theirs) is False
    assert channel.drop_owner("p1") == 2
    assert len(channel) == 0
