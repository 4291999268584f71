"""Built-in fixture documents.

Each fixture carries its own page script. Page scripts only touch the DOM and never
talk to the controller; everything the controller learns goes through the agent.
"""

from __future__ import annotations

LOGIN_HTML = """<!doctype html>
<html>
  <head><title>Login</title></head>
  <body>
    <h1>Sign in</h1>
    <form id="login-form">
      <label>Username <input id="username" name="username" autocomplete="username"></label>
      <label>Password <input id="password" name="password" type="password"></label>
      <button id="login-btn" type="submit">Log in</button>
    </form>
    <p id="status"></p>
    <script>
      document.getElementById('login-form').addEventListener('submit', (e) => {
        e.preventDefault();
        const user = document.getElementById('username').value.trim();
        document.getElementById('status').textContent = user ? `Welcome, ${user}!` : 'Please enter a username.';
      });
    </script>
  </body>
</html>
"""

SEARCH_HTML = """<!doctype html>
<html>
  <head><title>Search</title></head>
  <body>
    <h1>Search</h1>
    <input id="q" name="q" placeholder="Search...">
    <button id="go" type="button" disabled>Go</button>
    <ul id="results"></ul>
    <script>
      const q = document.getElementById('q');
      const go = document.getElementById('go');
      const results = document.getElementById('results');
      // Go only becomes usable once something was typed.
      q.addEventListener('input', () => { go.disabled = !q.value.trim(); });
      go.addEventListener('click', () => {
        const term = q.value.trim();
        results.textContent = '';
        for (const label of ['Result A', 'Result B']) {
          const li = document.createElement('li');
          li.textContent = `${label}: ${term}`;
          results.appendChild(li);
        }
      });
    </script>
  </body>
</html>
"""

FORM_HTML = """<!doctype html>
<html>
  <head><title>Feedback</title></head>
  <body>
    <h1>Feedback</h1>
    <form id="feedback-form">
      <label>Name <input id="name" name="name"></label>
      <label>Email <input id="email" name="email" type="email"></label>
      <label>Comment <textarea id="comment" name="comment"></textarea></label>
      <label><input id="subscribe" name="subscribe" type="checkbox" value="yes"> Subscribe</label>
      <button id="send" type="submit">Send</button>
    </form>
    <p id="form-status"></p>
    <script>
      document.getElementById('feedback-form').addEventListener('submit', (e) => {
        e.preventDefault();
        const name = document.getElementById('name').value.trim();
        document.getElementById('form-status').textContent = `Thanks, ${name || 'anonymous'}!`;
      });
    </script>
  </body>
</html>
"""

BUILTIN_FIXTURES: dict[str, str] = {
    "/fixtures/login.html": LOGIN_HTML,
    "/fixtures/search.html": SEARCH_HTML,
    "/fixtures/form.html": FORM_HTML,
}
