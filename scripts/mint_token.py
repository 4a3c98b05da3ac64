# scripts/mint_token.py
import os  # read environment variables
import argparse  # parse CLI args
from datetime import datetime, timedelta, timezone  # create an expiry timestamp
from jose import jwt  # create a JWT token

ROLES = ("user", "agent", "admin")  # roles understood by boxoffice.security


def main() -> None:  # main entrypoint
    parser = argparse.ArgumentParser(description="Mint a development bearer token for the boxoffice API")  # CLI parser
    parser.add_argument("--user-id", required=True)  # becomes the `sub` claim
    parser.add_argument("--role", choices=ROLES, default="user")  # access level
    parser.add_argument("--email")  # holder email used on purchases
    parser.add_argument("--first-name")  # holder first name
    parser.add_argument("--last-name")  # holder last name
    parser.add_argument("--ttl-minutes", type=int, default=60)  # token lifetime
    args = parser.parse_args()  # parse args

    secret = os.environ.get("JWT_SECRET", "dev_secret_change_me")  # signing secret

    exp_dt = datetime.now(timezone.utc) + timedelta(minutes=args.ttl_minutes)  # expiry datetime
    exp_ts = int(exp_dt.timestamp())  # expiry as unix seconds

    payload = {  # JWT claims/payload
        "sub": args.user_id,  # required by verifier
        "role": args.role,  # required by verifier
        "exp": exp_ts,  # required by verifier (expiry)
    }
    for claim in ("email", "first_name", "last_name"):  # optional profile claims
        value = getattr(args, claim)
        if value:
            payload[claim] = value

    token = jwt.encode(payload, secret, algorithm="HS256")  # sign token
    print(token)  # output token to stdout


if __name__ == "__main__":  # run as script
    main()  # call main
