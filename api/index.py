from mangum import Mangum

from santa.api import app

app.root_path = "/api"

handler = Mangum(app)
