from stationauth import create_app

app = create_app()
