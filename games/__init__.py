"""
Game integrations for the claim bot.

One module per counterpart bot:

    leaves: ``*leaves`` against leavesbot (1 hour cooldown).
    okayeg: ``=eg`` against okayegbot (1 hour cooldown, api.okayeg.com oracle).
    cookies: ``!cookie`` against thepositivebot (2 hour cooldown, shop
        purchases, api.roaringiron.com oracle).
"""
